"""
Constants and state helpers for Godaigo.

Board layout, stone pools, scroll decks, the common area, and the
win-condition check. State is a plain JSON-serializable dict; hexes are
stored as [q, r] lists and converted to tuples at the edges.
"""

import random
import secrets

from server.godaigo.hexgrid import as_hex, distance, tile_hexes
from server.godaigo.scrolls import ELEMENTS, SCROLL_DECKS, SCROLL_ELEMENTS, SCROLLS

# ── Rules Constants ───────────────────────────────────────────────────

SOURCE_POOL_START = 20
SOURCE_POOL_CAPACITY = 25
PLAYER_POOL_CAPACITY = 5

MAX_HAND_SIZE = 3
MAX_ACTIVE_SIZE = 2

AP_PER_TURN = 5
# Regained AP (Transmute, Reflecting Pool) never pushes a player past this
MAX_AP = 5

BASE_SCROLL_COST = 2
STONE_PLACEMENT_COST = 1
TELEPORT_COST = 1

PLACEMENT_RANGE = 1
EXTENDED_PLACEMENT_RANGE = 5

# Shrine output and Create yield
STONE_RANK = {"earth": 5, "water": 4, "fire": 3, "wind": 2, "void": 1}

SHRINES_PER_ELEMENT = 2
CATACOMB_SHRINES = 3

# Flower lattice: tile centers at a*(2, 1) + b*(3, -2) never overlap
LATTICE_U = (2, 1)
LATTICE_V = (3, -2)


# ── Deterministic Randomness ─────────────────────────────────────────

def game_rng(state):
    """
    A fresh RNG derived from the game seed and a draw counter, so every
    peer that applies the same actions shuffles the same way.
    """
    state["rng_counter"] += 1
    return random.Random(f"{state['seed']}:{state['rng_counter']}")


def shuffle_deck(state, element):
    game_rng(state).shuffle(state["decks"][element])


# ── Board Generation ─────────────────────────────────────────────────

def lattice_centers(radius=2):
    centers = []
    for a in range(-radius, radius + 1):
        for b in range(-radius, radius + 1):
            q = a * LATTICE_U[0] + b * LATTICE_V[0]
            r = a * LATTICE_U[1] + b * LATTICE_V[1]
            centers.append((q, r))
    centers.sort(key=lambda c: (distance(c, (0, 0)), c))
    return centers


def generate_tiles(num_players, rng):
    """
    Shrine tiles fill the middle of the board face down; player tiles
    ring them face up. Returns the tile list and each player's start hex.
    """
    shrines = [el for el in ELEMENTS for _ in range(SHRINES_PER_ELEMENT)]
    shrines += ["catacomb"] * CATACOMB_SHRINES
    rng.shuffle(shrines)

    centers = lattice_centers()
    tiles = []
    for i, shrine in enumerate(shrines):
        q, r = centers[i]
        tiles.append({"id": f"t{i}", "q": q, "r": r, "shrine": shrine, "flipped": True})

    starts = []
    for p in range(num_players):
        q, r = centers[len(shrines) + p]
        tiles.append({
            "id": f"p{p}", "q": q, "r": r, "shrine": "player",
            "flipped": False, "owner": p,
        })
        starts.append([q, r])
    return tiles, starts


# ── Player / State Creation ──────────────────────────────────────────

def create_player(index, player_id, name, position):
    return {
        "index": index,
        "player_id": player_id,
        "name": name,
        "position": list(position),
        "pool": {el: 0 for el in ELEMENTS},
        "ap": AP_PER_TURN,
        "hand": [],
        "active": [],
        "activated": [],
    }


def new_turn_tracking():
    return {"last_cast": None, "previous_cast": None, "stones_placed": 0}


def create_initial_state(player_ids, player_names, seed=None):
    """Build the full initial game state. Every peer must share the seed."""
    if seed is None:
        seed = secrets.token_hex(8)
    rng = random.Random(seed)

    tiles, starts = generate_tiles(len(player_ids), rng)
    players = [
        create_player(i, pid, name, starts[i])
        for i, (pid, name) in enumerate(zip(player_ids, player_names))
    ]

    decks = {}
    for element in SCROLL_ELEMENTS:
        deck = list(SCROLL_DECKS[element])
        rng.shuffle(deck)
        decks[element] = deck

    return {
        "game": "godaigo",
        "seed": seed,
        "rng_counter": 0,
        "player_ids": list(player_ids),
        "players": players,
        "tiles": tiles,
        "stones": [],
        "source_pool": {el: SOURCE_POOL_START for el in ELEMENTS},
        "decks": decks,
        "common_area": {el: None for el in SCROLL_ELEMENTS},
        "current_player": 0,
        "turn_number": 0,
        "turn_started_at": None,
        "phase": "main",
        "sub_phase": None,
        "selection": None,
        "response_window": None,
        "window_seq": 0,
        "buffs": {},
        "turn_tracking": new_turn_tracking(),
        "pending_cascade": [],
        # Start-of-turn work (replays, Excavate teleport) waiting on a free selection slot
        "deferred_queue": [],
        "log": [],
        "winner": None,
    }


# ── Board Queries ────────────────────────────────────────────────────

def stones_by_hex(state):
    return {(s["q"], s["r"]): s["element"] for s in state["stones"]}


def stone_at(state, pos):
    for stone in state["stones"]:
        if (stone["q"], stone["r"]) == pos:
            return stone
    return None


def player_at(state, pos):
    for player in state["players"]:
        if as_hex(player["position"]) == pos:
            return player["index"]
    return None


def player_pos(state, player_idx):
    return as_hex(state["players"][player_idx]["position"])


def tile_center(tile):
    return tile["q"], tile["r"]


def tile_by_id(state, tile_id):
    for tile in state["tiles"]:
        if tile["id"] == tile_id:
            return tile
    return None


def tile_at(state, pos):
    for tile in state["tiles"]:
        if pos in tile_hexes(tile_center(tile)):
            return tile
    return None


def board_hexes(state):
    hexes = set()
    for tile in state["tiles"]:
        hexes.update(tile_hexes(tile_center(tile)))
    return hexes


def is_free_hex(state, pos):
    """On the board with no stone and no player."""
    return (
        pos in board_hexes(state)
        and stone_at(state, pos) is None
        and player_at(state, pos) is None
    )


def tile_is_clear(state, tile):
    """No stones and no players anywhere on the tile."""
    for pos in tile_hexes(tile_center(tile)):
        if stone_at(state, pos) is not None or player_at(state, pos) is not None:
            return False
    return True


def stones_on_tile(state, tile):
    hexes = set(tile_hexes(tile_center(tile)))
    return [s for s in state["stones"] if (s["q"], s["r"]) in hexes]


# ── Stone Pools ──────────────────────────────────────────────────────

def draw_stones_to_pool(state, element, count, player_idx):
    """
    Move stones from the source pool into a player's pool.
    Draws min(requested, available in source, room in the player's pool).
    """
    pool = state["players"][player_idx]["pool"]
    room = PLAYER_POOL_CAPACITY - pool[element]
    drawn = max(0, min(count, state["source_pool"][element], room))
    state["source_pool"][element] -= drawn
    pool[element] += drawn
    return drawn


def return_stones_to_source(state, element, count):
    """Return stones to the source, never past its capacity. Returns the amount accepted."""
    room = SOURCE_POOL_CAPACITY - state["source_pool"][element]
    returned = max(0, min(count, room))
    state["source_pool"][element] += returned
    return returned


def remove_stone(state, stone):
    state["stones"].remove(stone)
    return_stones_to_source(state, stone["element"], 1)


# ── Scrolls, Decks, Common Area ──────────────────────────────────────

def draw_scroll(state, element):
    """Pop the top scroll of an element's deck, or None if it is empty."""
    deck = state["decks"][element]
    if not deck:
        return None
    return deck.pop()


def return_scroll_to_deck(state, sid):
    """Put a scroll on the bottom of its own deck."""
    state["decks"][SCROLLS[sid].element].insert(0, sid)


def discard_to_common_area(state, sid):
    """
    Place a scroll in its element's common-area slot. An occupied slot sends
    its previous scroll to the bottom of its deck. Returns the replaced id.
    """
    slot = SCROLLS[sid].element
    replaced = state["common_area"][slot]
    if replaced == sid:
        return None
    if replaced is not None:
        return_scroll_to_deck(state, replaced)
    state["common_area"][slot] = sid
    return replaced


def common_area_scrolls(state):
    return [sid for sid in state["common_area"].values() if sid is not None]


def remove_from_player(state, player_idx, sid):
    """Drop a scroll from a player's hand or active area. Returns where it was."""
    player = state["players"][player_idx]
    for zone in ("hand", "active"):
        if sid in player[zone]:
            player[zone].remove(sid)
            return zone
    return None


def scroll_holder(state, sid):
    """Index of the player holding sid in hand or active area, or None."""
    for player in state["players"]:
        if sid in player["hand"] or sid in player["active"]:
            return player["index"]
    return None


# ── Activation / Victory ─────────────────────────────────────────────

def activate_elements(state, player_idx, elements):
    activated = state["players"][player_idx]["activated"]
    added = []
    for element in elements:
        if element in ELEMENTS and element not in activated:
            activated.append(element)
            added.append(element)
    return added


def check_win_condition(state):
    """Return the index of a player who has activated all five elements, or None."""
    for player in state["players"]:
        if len(player["activated"]) == len(ELEMENTS):
            return player["index"]
    return None
