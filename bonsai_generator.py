#!/usr/bin/env python3
"""bonsai_generator.py

Grows a procedurally generated ASCII-art bonsai tree in the terminal.

Key features:
- Stochastic branch growth (trunk, shoots, dying and dead foliage).
- Depth-first growth on an explicit stack (no recursion limit concerns).
- Live mode: every growth step is drawn and paced on screen.
- Infinite and screensaver modes, pot art and a message box.
- Save/load of the (seed, branch count) pair to replay a tree.
- Print mode: render the tree to stdout with ANSI colours.

Run:
  python bonsai_generator.py grow --live
  python bonsai_generator.py grow --print --seed 42
  python bonsai_generator.py trace --seed 42 --output trace.json
  python bonsai_generator.py --help
"""

from __future__ import annotations

import argparse
import curses
import enum
import json
import os
import random
import shutil
import sys
import textwrap
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, cast

# -------------------------
# Errors / Validation
# -------------------------


class ConfigError(ValueError):
    pass


class RenderError(RuntimeError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float)) and not isinstance(x, bool),
        f"{path} must be a number",
    )
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_bool(x: Any, path: str) -> bool:
    _require(isinstance(x, bool), f"{path} must be a boolean")
    return cast(bool, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


# -------------------------
# Tree model
# -------------------------


class BranchKind(enum.Enum):
    TRUNK = "trunk"
    SHOOT_LEFT = "shoot_left"
    SHOOT_RIGHT = "shoot_right"
    DYING = "dying"
    DEAD = "dead"


GROWING_KINDS = frozenset(
    {BranchKind.TRUNK, BranchKind.SHOOT_LEFT, BranchKind.SHOOT_RIGHT}
)


class ControlSignal(enum.Enum):
    CONTINUE = "continue"
    TERMINATE = "terminate"


class ColorAttr(NamedTuple):
    color: int
    bold: bool = False


# 16-colour terminal palette indices.
BLACK = 0
GREEN = 2
YELLOW = 3
GRAY = 8
BRIGHT_GREEN = 10
BRIGHT_YELLOW = 11

LEAF_TOKEN_WIDTH = 1
QUIT_KEYS = frozenset({ord("q")})


@dataclass
class Branch:
    """One growth activation: a segment of trunk, shoot or foliage."""

    kind: BranchKind
    x: int
    y: int
    life: int
    age: int = 0
    shoot_cooldown: int = 0
    # deltas of the current step, drawn once any spawned child has finished
    pending: tuple[int, int] | None = None


@dataclass
class Counters:
    branches: int = 0
    shoots: int = 0
    shoot_counter: int = 0

    def reset(self) -> None:
        self.branches = 0
        self.shoots = 0
        self.shoot_counter = 0


@dataclass(frozen=True)
class GrowthConfig:
    multiplier: int = 5
    life_start: int = 32
    leaves: tuple[str, ...] = ("&",)
    live: bool = False
    time_step: float = 0.03
    verbosity: int = 0

    def __post_init__(self) -> None:
        _require(0 <= self.multiplier <= 20, "multiplier must be between 0 and 20")
        _require(0 <= self.life_start <= 200, "life must be between 0 and 200")
        _require(len(self.leaves) > 0, "leaves must not be empty")
        for tok in self.leaves:
            _require(
                len(tok) == LEAF_TOKEN_WIDTH,
                f"each leaf must be a single character, got {tok!r}",
            )
        if self.live:
            _require(self.time_step > 0, "time_step must be > 0 in live mode")
        else:
            _require(self.time_step >= 0, "time_step must be >= 0")
        _require(0 <= self.verbosity <= 2, "verbosity must be between 0 and 2")


@dataclass(frozen=True)
class RunConfig:
    growth: GrowthConfig
    infinite: bool
    time_wait: float
    screensaver: bool
    print_tree: bool
    base: int
    message: str | None
    seed: int | None
    save_path: str | None
    load_path: str | None


class RandomSource(Protocol):
    def randrange(self, n: int, /) -> int: ...


class RenderSurface(Protocol):
    def write(self, x: int, y: int, text: str, color: ColorAttr) -> None: ...

    def height(self) -> int: ...

    def flush(self) -> None: ...


class KeySource(Protocol):
    def read_key(self) -> int | None: ...


StepHook = Callable[[Branch, int, int], None]


# -------------------------
# Dice, deltas and glyphs
# -------------------------

# Weighted dice: (faces, value) entries, die size is the sum of the faces.
Die = tuple[tuple[int, int], ...]

TRUNK_DX: Die = ((1, -2), (3, -1), (2, 0), (3, 1), (1, 2))
SHOOT_DY: Die = ((2, -1), (6, 0), (2, 1))
SHOOT_LEFT_DX: Die = ((2, -2), (4, -1), (3, 0), (1, 1))
SHOOT_RIGHT_DX: Die = ((2, 2), (4, 1), (3, 0), (1, -1))
DYING_DY: Die = ((2, -1), (7, 0), (1, 1))
DYING_DX: Die = ((1, -3), (2, -2), (3, -1), (3, 0), (3, 1), (2, 2), (1, 3))
DEAD_DY: Die = ((3, -1), (4, 0), (3, 1))


def roll(rng: RandomSource, die: Die) -> int:
    """Roll a weighted die and return the value of the face it lands on."""
    face = rng.randrange(sum(faces for faces, _ in die))
    for faces, value in die:
        if face < faces:
            return value
        face -= faces
    raise AssertionError("unreachable")


def set_deltas(
    rng: RandomSource, kind: BranchKind, life: int, age: int, multiplier: int
) -> tuple[int, int]:
    """Pick the (dx, dy) step of a branch.

    Rows grow downwards, so dy = -1 is upward growth.
    """
    if kind is BranchKind.TRUNK:
        if age <= 2 or life < 4:
            return rng.randrange(3) - 1, 0
        if age < multiplier * 3:
            # multiplier >= 2 here: smaller values are caught by age <= 2
            dy = -1 if age % (multiplier // 2) == 0 else 0
            return roll(rng, TRUNK_DX), dy
        dy = -1 if rng.randrange(10) > 2 else 0
        return rng.randrange(3) - 1, dy

    if kind is BranchKind.SHOOT_LEFT:
        dy = roll(rng, SHOOT_DY)
        return roll(rng, SHOOT_LEFT_DX), dy

    if kind is BranchKind.SHOOT_RIGHT:
        dy = roll(rng, SHOOT_DY)
        return roll(rng, SHOOT_RIGHT_DX), dy

    if kind is BranchKind.DYING:
        dy = roll(rng, DYING_DY)
        return roll(rng, DYING_DX), dy

    dy = roll(rng, DEAD_DY)
    return rng.randrange(3) - 1, dy


def choose_color(rng: RandomSource, kind: BranchKind) -> ColorAttr:
    if kind in GROWING_KINDS:
        if rng.randrange(2) == 0:
            return ColorAttr(BRIGHT_YELLOW, True)
        return ColorAttr(YELLOW)
    if kind is BranchKind.DYING:
        return ColorAttr(GREEN, rng.randrange(10) == 0)
    return ColorAttr(BRIGHT_GREEN, rng.randrange(3) == 0)


def choose_glyph(
    rng: RandomSource, kind: BranchKind, dx: int, dy: int, leaves: tuple[str, ...]
) -> str:
    if kind is BranchKind.TRUNK:
        if dy == 0:
            return "/~"
        if dx < 0:
            return "\\|"
        if dx == 0:
            return "/|\\"
        return "|/"

    if kind is BranchKind.SHOOT_LEFT:
        if dy > 0:
            return "\\"
        if dy == 0:
            return "\\_"
        if dx < 0:
            return "\\|"
        if dx == 0:
            return "/|"
        return "/"

    if kind is BranchKind.SHOOT_RIGHT:
        if dy > 0:
            return "/"
        if dy == 0:
            return "_/"
        if dx < 0:
            return "\\|"
        if dx == 0:
            return "/|"
        return "/"

    return leaves[rng.randrange(len(leaves))] * LEAF_TOKEN_WIDTH


# -------------------------
# Frame pacing
# -------------------------


class FrameCoordinator:
    """Flushes frames, sleeps between them and turns key presses into signals."""

    def __init__(
        self,
        keys: KeySource,
        *,
        screensaver: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.keys = keys
        self.screensaver = screensaver
        self._sleep = sleep
        self._clock = clock

    def poll(self) -> ControlSignal:
        key = self.keys.read_key()
        if key is None:
            return ControlSignal.CONTINUE
        if self.screensaver or key in QUIT_KEYS:
            return ControlSignal.TERMINATE
        return ControlSignal.CONTINUE

    def present_and_pace(
        self, surface: RenderSurface, time_step: float
    ) -> ControlSignal:
        surface.flush()
        self._sleep(time_step)
        return self.poll()

    def hold(
        self, surface: RenderSurface, seconds: float, step: float = 0.05
    ) -> ControlSignal:
        """Show the current frame for ``seconds``, polling for keys meanwhile."""
        surface.flush()
        deadline = self._clock() + seconds
        while True:
            if self.poll() is ControlSignal.TERMINATE:
                return ControlSignal.TERMINATE
            remaining = deadline - self._clock()
            if remaining <= 0:
                return ControlSignal.CONTINUE
            self._sleep(min(step, remaining))


# -------------------------
# Growth
# -------------------------


def spawn_child(
    config: GrowthConfig, counters: Counters, rng: RandomSource, branch: Branch
) -> Branch | None:
    """Apply the transition rules for one step of ``branch``.

    ``branch.life`` has already been decremented for this step. Returns the
    child activation to grow before ``branch`` continues, if any.
    """
    life = branch.life
    multiplier = config.multiplier

    def child(kind: BranchKind, child_life: int) -> Branch:
        return Branch(
            kind, branch.x, branch.y, child_life, shoot_cooldown=multiplier
        )

    if life < 3:
        return child(BranchKind.DEAD, life)

    if branch.kind in GROWING_KINDS and life < multiplier + 2:
        return child(BranchKind.DYING, life)

    if branch.kind is BranchKind.TRUNK and (
        rng.randrange(3) == 0 or (multiplier > 0 and life % multiplier == 0)
    ):
        if rng.randrange(8) == 0 and life > 7:
            branch.shoot_cooldown = multiplier * 2
            return child(BranchKind.TRUNK, life + rng.randrange(5) - 2)

        if branch.shoot_cooldown <= 0:
            branch.shoot_cooldown = multiplier * 2
            counters.shoots += 1
            counters.shoot_counter += 1
            if counters.shoot_counter % 2 == 0:
                kind = BranchKind.SHOOT_LEFT
            else:
                kind = BranchKind.SHOOT_RIGHT
            return child(kind, life + multiplier)

    return None


def grow(
    config: GrowthConfig,
    counters: Counters,
    surface: RenderSurface,
    position: tuple[int, int],
    kind: BranchKind = BranchKind.TRUNK,
    life: int | None = None,
    *,
    rng: RandomSource,
    coordinator: FrameCoordinator | None = None,
    target_branch_count: int = 0,
    on_step: StepHook | None = None,
) -> ControlSignal:
    """Grow a branch and everything it spawns, drawing onto ``surface``.

    Children are grown depth-first: a spawned branch completes its whole
    lifetime before its parent draws the step that spawned it. Growth stops
    without further writes as soon as a ``TERMINATE`` signal is seen; the
    signal is returned rather than raised.

    While ``counters.branches`` is below ``target_branch_count`` live pacing
    is skipped so a loaded tree catches up instantly.
    """
    x, y = position
    if life is None:
        life = config.life_start

    stack: list[Branch] = [
        Branch(kind, x, y, life, shoot_cooldown=config.multiplier)
    ]
    signal = ControlSignal.CONTINUE

    while stack:
        if signal is ControlSignal.TERMINATE:
            return signal

        br = stack[-1]

        if br.pending is not None:
            dx, dy = br.pending
            br.pending = None
            br.x += dx
            br.y += dy

            shown = BranchKind.DYING if br.life < 4 else br.kind
            color = choose_color(rng, shown)
            glyph = choose_glyph(rng, shown, dx, dy, config.leaves)
            surface.write(br.x, br.y, glyph, color)
            counters.branches += 1

            if (
                config.live
                and coordinator is not None
                and counters.branches >= target_branch_count
            ):
                signal = coordinator.present_and_pace(surface, config.time_step)
            continue

        if br.life <= 0:
            stack.pop()
            continue

        if (
            coordinator is not None
            and coordinator.poll() is ControlSignal.TERMINATE
        ):
            return ControlSignal.TERMINATE

        br.life -= 1
        br.age = config.life_start - br.life

        dx, dy = set_deltas(rng, br.kind, br.life, br.age, config.multiplier)
        if dy > 0 and br.y >= surface.height() - 2:
            dy = 0

        if on_step is not None:
            on_step(br, dx, dy)

        spawned = spawn_child(config, counters, rng, br)
        br.shoot_cooldown -= 1
        br.pending = (dx, dy)
        if spawned is not None:
            stack.append(spawned)

    return signal


def grow_tree(
    config: GrowthConfig,
    counters: Counters,
    surface: RenderSurface,
    origin: tuple[int, int],
    rng: RandomSource,
    *,
    coordinator: FrameCoordinator | None = None,
    target_branch_count: int = 0,
    on_step: StepHook | None = None,
) -> ControlSignal:
    """Reset the counters and grow a whole tree from a trunk at ``origin``."""
    counters.reset()
    counters.shoot_counter = rng.randrange(2**31)
    signal = grow(
        config,
        counters,
        surface,
        origin,
        BranchKind.TRUNK,
        config.life_start,
        rng=rng,
        coordinator=coordinator,
        target_branch_count=target_branch_count,
        on_step=on_step,
    )
    surface.flush()
    return signal


# -------------------------
# Surfaces
# -------------------------


class Write(NamedTuple):
    x: int
    y: int
    text: str
    color: ColorAttr


@dataclass
class BufferSurface:
    """In-memory character grid that also keeps a log of every write."""

    width: int
    rows: int
    cells: list[list[tuple[str, ColorAttr] | None]] = field(init=False)
    writes: list[Write] = field(default_factory=list)
    flushes: int = 0

    def __post_init__(self) -> None:
        self.cells = [[None] * self.width for _ in range(self.rows)]

    def write(self, x: int, y: int, text: str, color: ColorAttr) -> None:
        self.writes.append(Write(x, y, text, color))
        if not 0 <= y < self.rows:
            return
        row = self.cells[y]
        for i, ch in enumerate(text):
            if 0 <= x + i < self.width:
                row[x + i] = (ch, color)

    def height(self) -> int:
        return self.rows

    def flush(self) -> None:
        self.flushes += 1


class CursesSurface:
    """Draws onto a curses window, optionally mirroring into a buffer."""

    def __init__(self, window: Any, shadow: BufferSurface | None = None) -> None:
        self.window = window
        self.shadow = shadow

    def write(self, x: int, y: int, text: str, color: ColorAttr) -> None:
        if self.shadow is not None:
            self.shadow.write(x, y, text, color)
        if x < 0 or y < 0:
            return
        try:
            self.window.addstr(y, x, text, curses_attr(color))
        except curses.error:
            # off-screen
            pass

    def height(self) -> int:
        return cast(int, self.window.getmaxyx()[0])

    def flush(self) -> None:
        try:
            self.window.refresh()
        except curses.error as e:
            raise RenderError(f"failed to refresh the screen: {e}") from e


class CursesKeys:
    def __init__(self, window: Any) -> None:
        self.window = window
        self.window.nodelay(True)

    def read_key(self) -> int | None:
        try:
            key = self.window.getch()
        except curses.error:
            return None
        return None if key == -1 else cast(int, key)


def init_palette() -> None:
    curses.start_color()
    try:
        curses.use_default_colors()
        background = -1
    except curses.error:
        background = curses.COLOR_BLACK
    colors = min(curses.COLORS, 16)
    for i in range(1, min(16, curses.COLOR_PAIRS)):
        curses.init_pair(i, i % colors, background)


def curses_attr(color: ColorAttr) -> int:
    attr = curses.color_pair(color.color) if curses.has_colors() else 0
    if color.bold:
        attr |= curses.A_BOLD
    return attr


# -------------------------
# Pot, message and text output
# -------------------------

Segment = tuple[str, ColorAttr]

_RIM = ColorAttr(GRAY, True)
_GRASS = ColorAttr(GREEN, True)
_SOIL = ColorAttr(BRIGHT_YELLOW, True)


def base_art(base: int) -> list[list[Segment]]:
    """Return the pot drawing as rows of coloured segments."""
    if base == 1:
        return [
            [
                (":", _RIM),
                ("___________", _GRASS),
                ("./~~~\\.", _SOIL),
                ("___________", _GRASS),
                (":", _RIM),
            ],
            [(" \\                           / ", _RIM)],
            [("  \\_________________________/ ", _RIM)],
            [("  (_)                     (_)", _RIM)],
        ]
    if base == 2:
        return [
            [
                ("(", _RIM),
                ("---", _GRASS),
                ("./~~~\\.", _SOIL),
                ("---", _GRASS),
                (")", _RIM),
            ],
            [(" (           ) ", _RIM)],
            [("  (_________)  ", _RIM)],
        ]
    return []


def base_size(base: int) -> tuple[int, int]:
    art = base_art(base)
    if not art:
        return (0, 0)
    width = max(sum(len(text) for text, _ in row) for row in art)
    return (width, len(art))


def draw_base(window: Any, base: int) -> None:
    rows, cols = window.getmaxyx()
    width, height = base_size(base)
    left = max(0, (cols - width) // 2)
    for r, row in enumerate(base_art(base)):
        x = left
        for text, color in row:
            try:
                window.addstr(rows - height + r, x, text, curses_attr(color))
            except curses.error:
                pass
            x += len(text)


def message_box(message: str, cols: int) -> list[str]:
    width = min(len(message), max(10, cols // 4))
    return textwrap.wrap(message, width) or [""]


def draw_message(screen: Any, message: str) -> Any:
    rows, cols = screen.getmaxyx()
    lines = message_box(message, cols)
    box_h = len(lines) + 2
    box_w = max(len(line) for line in lines) + 4
    top = min(max(0, int(rows * 0.7) - box_h), max(0, rows - box_h))
    left = min(int(cols * 0.7), max(0, cols - box_w))
    try:
        win = screen.derwin(box_h, box_w, top, left)
    except curses.error:
        return None
    win.erase()
    win.box()
    for i, line in enumerate(lines):
        try:
            win.addstr(i + 1, 2, line)
        except curses.error:
            pass
    return win


def _sgr(color: ColorAttr) -> str:
    code = 30 + color.color if color.color < 8 else 90 + color.color - 8
    return f"\x1b[{'1;' if color.bold else ''}{code}m"


def _render_row(cells: Iterable[Segment], color: bool) -> str:
    out: list[str] = []
    current: ColorAttr | None = None
    for ch, attr in cells:
        if color and ch != " " and attr != current:
            out.append(_sgr(attr))
            current = attr
        out.append(ch)
    line = "".join(out).rstrip()
    if color and current is not None:
        line += "\x1b[0m"
    return line


_BLANK = ColorAttr(BLACK)


def render_text(
    tree: BufferSurface, base: int, message: str | None = None, *, color: bool = True
) -> str:
    """Render a grown tree, its pot and an optional message as text."""
    rows = [
        [cell if cell else (" ", _BLANK) for cell in row] for row in tree.cells
    ]
    while rows and all(ch == " " for ch, _ in rows[0]):
        rows.pop(0)

    lines = [_render_row(row, color) for row in rows]

    width, _ = base_size(base)
    pad = " " * max(0, (tree.width - width) // 2)
    for art_row in base_art(base):
        cells = [(ch, attr) for text, attr in art_row for ch in text]
        lines.append(pad + _render_row(cells, color))

    if message:
        lines.append("")
        lines.extend(message_box(message, tree.width))

    return "\n".join(lines) + "\n"


# -------------------------
# Persistence
# -------------------------


def default_cache_path() -> str:
    cache = os.environ.get("XDG_CACHE_HOME") or os.path.join(
        os.path.expanduser("~"), ".cache"
    )
    return os.path.join(cache, "bonsai-grow")


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def save_counts(path: str, seed: int, branches: int) -> None:
    _ensure_parent_dir(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"{seed} {branches}\n")


def load_counts(path: str) -> tuple[int, int]:
    with open(path, encoding="utf-8") as f:
        fields = f.read().split()
    _require(len(fields) == 2, f"{path} must hold a seed and a branch count")
    try:
        seed, branches = int(fields[0]), int(fields[1])
    except ValueError as e:
        raise ConfigError(f"{path} must hold two integers: {e}") from e
    _require(seed >= 0 and branches >= 0, f"{path} holds negative values")
    return seed, branches


# -------------------------
# Config parsing
# -------------------------


def _parse_leaves(x: Any) -> tuple[str, ...]:
    if isinstance(x, str):
        tokens = x.split(",")
    else:
        _require(isinstance(x, list), "leaves must be a list or a string")
        tokens = [_as_str(t, f"leaves[{i}]") for i, t in enumerate(x)]
    return tuple(tokens)


def parse_config(obj: dict[str, Any]) -> RunConfig:
    obj = _as_dict(obj, "root")

    screensaver = _as_bool(obj.get("screensaver", False), "screensaver")
    live = _as_bool(obj.get("live", False), "live") or screensaver
    infinite = _as_bool(obj.get("infinite", False), "infinite") or screensaver

    time_wait = _as_float(obj.get("time_wait", 4.0), "time_wait")
    _require(time_wait >= 0, "time_wait must be >= 0")

    base = _as_int(obj.get("base", 1), "base")
    _require(0 <= base <= 2, "base must be 0, 1 or 2")

    # ranges are checked by GrowthConfig itself
    growth = GrowthConfig(
        multiplier=_as_int(obj.get("multiplier", 5), "multiplier"),
        life_start=_as_int(obj.get("life", 32), "life"),
        leaves=_parse_leaves(obj.get("leaves", ["&"])),
        live=live,
        time_step=_as_float(obj.get("time_step", 0.03), "time_step"),
        verbosity=_as_int(obj.get("verbosity", 0), "verbosity"),
    )

    message = obj.get("message")
    if message is not None:
        message = _as_str(message, "message")

    seed = obj.get("seed")
    if seed is not None:
        seed = _as_int(seed, "seed")
        _require(seed >= 0, "seed must be >= 0")

    save_path = obj.get("save")
    if save_path is not None:
        save_path = _as_str(save_path, "save")
    load_path = obj.get("load")
    if load_path is not None:
        load_path = _as_str(load_path, "load")
    if screensaver:
        save_path = save_path or default_cache_path()
        load_path = load_path or default_cache_path()

    return RunConfig(
        growth=growth,
        infinite=infinite,
        time_wait=time_wait,
        screensaver=screensaver,
        print_tree=_as_bool(obj.get("print", False), "print"),
        base=base,
        message=message,
        seed=seed,
        save_path=save_path,
        load_path=load_path,
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


# -------------------------
# Running a session
# -------------------------


@dataclass
class Session:
    """State carried across the trees of one run."""

    config: RunConfig
    seed: int
    target_branch_count: int = 0
    counters: Counters = field(default_factory=Counters)
    grown: bool = False
    cancelled: bool = False
    last_tree: BufferSurface | None = None


def start_session(cfg: RunConfig) -> Session:
    seed = cfg.seed if cfg.seed is not None else int(time.time())
    target = 0
    # a screensaver's first run has no cache file yet
    if cfg.load_path is not None and (
        not cfg.screensaver or os.path.exists(cfg.load_path)
    ):
        seed, target = load_counts(cfg.load_path)
    return Session(config=cfg, seed=seed, target_branch_count=target)


def finish_session(session: Session) -> None:
    if session.grown and session.config.save_path is not None:
        save_counts(
            session.config.save_path, session.seed, session.counters.branches
        )


def tree_origin(cols: int, tree_rows: int) -> tuple[int, int]:
    return (cols // 2, tree_rows - 1)


def _status_lines(session: Session, branch: Branch, dx: int, dy: int) -> list[str]:
    c = session.counters
    lines = [f"seed: {session.seed}, branches: {c.branches}, shoots: {c.shoots}"]
    if session.config.growth.verbosity > 1:
        lines.append(
            f"{branch.kind.value}: age: {branch.age:02d}, life: {branch.life:02d}, "
            f"dx: {dx:+d}, dy: {dy:+d}, cooldown: {branch.shoot_cooldown}"
        )
    return lines


def grow_printed(session: Session, width: int, height: int) -> BufferSurface:
    """Grow one tree without a terminal UI."""
    cfg = session.config
    _, base_h = base_size(cfg.base)
    tree = BufferSurface(width, max(1, height - base_h))

    def report(branch: Branch, dx: int, dy: int) -> None:
        for line in _status_lines(session, branch, dx, dy)[1:]:
            print(line, file=sys.stderr)

    on_step = report if cfg.growth.verbosity > 1 else None

    session.grown = True
    grow_tree(
        cfg.growth,
        session.counters,
        tree,
        tree_origin(width, tree.rows),
        random.Random(session.seed),
        on_step=on_step,
    )
    session.last_tree = tree
    if cfg.growth.verbosity > 0:
        c = session.counters
        print(
            f"seed: {session.seed}, branches: {c.branches}, shoots: {c.shoots}",
            file=sys.stderr,
        )
    return tree


def _curses_session(screen: Any, session: Session) -> None:
    cfg = session.config
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    if curses.has_colors():
        init_palette()

    keys = CursesKeys(screen)
    coordinator = FrameCoordinator(keys, screensaver=cfg.screensaver)
    reseed = random.Random()
    tree_win: Any = None
    tree_size: tuple[int, int] | None = None

    while True:
        screen.erase()
        rows, cols = screen.getmaxyx()
        _, base_h = base_size(cfg.base)
        tree_rows = rows - base_h
        if tree_rows < 1:
            raise RenderError(f"terminal too small ({cols}x{rows})")

        draw_base(screen, cfg.base)
        screen.refresh()
        # the tree window shares the screen's cells, so erase() above clears it
        if (tree_rows, cols) != tree_size:
            tree_win = screen.derwin(tree_rows, cols, 0, 0)
            tree_size = (tree_rows, cols)
        shadow = BufferSurface(cols, tree_rows)
        surface = CursesSurface(tree_win, shadow)

        def report(branch: Branch, dx: int, dy: int) -> None:
            for i, line in enumerate(_status_lines(session, branch, dx, dy)):
                try:
                    tree_win.addstr(i, 0, line.ljust(cols - 1)[: cols - 1])
                except curses.error:
                    pass

        on_step = report if cfg.growth.verbosity > 0 else None

        session.grown = True
        signal = grow_tree(
            cfg.growth,
            session.counters,
            surface,
            tree_origin(cols, tree_rows),
            random.Random(session.seed),
            coordinator=coordinator,
            target_branch_count=session.target_branch_count,
            on_step=on_step,
        )
        session.last_tree = shadow
        session.target_branch_count = 0

        if cfg.message:
            box = draw_message(screen, cfg.message)
            if box is not None:
                box.refresh()

        if signal is ControlSignal.TERMINATE:
            session.cancelled = True
            return

        if not cfg.infinite:
            break

        if coordinator.hold(surface, cfg.time_wait) is ControlSignal.TERMINATE:
            session.cancelled = True
            return
        session.seed = reseed.randrange(2**31)

    if not cfg.print_tree:
        screen.nodelay(False)
        screen.getch()


def run_session(session: Session) -> None:
    """Run the terminal UI, saving the counters on every way out."""
    cfg = session.config
    try:
        if cfg.print_tree and not cfg.growth.live and not cfg.infinite:
            width, height = shutil.get_terminal_size((80, 24))
            grow_printed(session, width, height)
        else:
            curses.wrapper(_curses_session, session)
    except curses.error as e:
        raise RenderError(f"terminal UI failed: {e}") from e
    except KeyboardInterrupt:
        session.cancelled = True
    finally:
        finish_session(session)

    if cfg.print_tree and session.last_tree is not None:
        sys.stdout.write(
            render_text(
                session.last_tree,
                cfg.base,
                cfg.message,
                color=sys.stdout.isatty(),
            )
        )


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
GROWTH

  The tree grows from a trunk at the bottom centre of the screen. The trunk
  spawns shoots to the left and right; branches near the end of their life
  wilt into foliage drawn with the leaf characters (-c).

  -M/--multiplier (0-20, default 5) controls how eagerly branches split.
  -L/--life (0-200, default 32) is the total growth budget.

KEYS

  q quits. In screensaver mode (-S) any key quits.

SAVE / LOAD

  -W FILE saves "<seed> <branches>" when the program exits. -C FILE loads such
  a pair: the tree is regrown from the same seed without pausing until the
  saved branch count is reached, then continues live.
  Without a FILE argument both use $XDG_CACHE_HOME/bonsai-grow.

JSON CONFIG

  --config FILE reads the same settings from a JSON object. Keys: live,
  time_step, infinite, time_wait, screensaver, message, base, leaves,
  multiplier, life, print, seed, save, load, verbosity. Command line options
  override values from the file.

  Example:

    {"live": true, "time_step": 0.02, "leaves": ["&", "*"], "life": 40}
"""


def _add_growth_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Read settings from a JSON file.")
    p.add_argument("-l", "--live", action="store_true", default=None,
                   help="Show each step of growth.")
    p.add_argument("-t", "--time", dest="time_step", type=float,
                   help="In live mode, wait TIME seconds between steps (default 0.03).")
    p.add_argument("-i", "--infinite", action="store_true", default=None,
                   help="Keep growing trees.")
    p.add_argument("-w", "--wait", dest="time_wait", type=float,
                   help="In infinite mode, wait TIME seconds between trees (default 4).")
    p.add_argument("-S", "--screensaver", action="store_true", default=None,
                   help="Live and infinite, quit on any key, save/load the cache file.")
    p.add_argument("-m", "--message", help="Attach a message to the tree.")
    p.add_argument("-b", "--base", type=int, help="Pot style: 0 none, 1 or 2 (default 1).")
    p.add_argument("-c", "--leaf", dest="leaves",
                   help="Comma separated leaf characters (default '&').")
    p.add_argument("-M", "--multiplier", type=int,
                   help="Branch multiplier, 0-20 (default 5).")
    p.add_argument("-L", "--life", type=int, help="Tree life, 0-200 (default 32).")
    p.add_argument("-p", "--print", dest="print", action="store_true", default=None,
                   help="Print the tree to stdout when done.")
    p.add_argument("-s", "--seed", type=int, help="Seed for the random generator.")
    p.add_argument("-W", "--save", nargs="?", const="", metavar="FILE",
                   help="Save seed and branch count on exit.")
    p.add_argument("-C", "--load", nargs="?", const="", metavar="FILE",
                   help="Load seed and branch count.")
    p.add_argument("-v", "--verbose", dest="verbosity", action="count",
                   help="Show growth statistics; -vv adds per-step detail.")


_OPTION_KEYS = (
    "live", "time_step", "infinite", "time_wait", "screensaver", "message",
    "base", "leaves", "multiplier", "life", "print", "seed", "save", "load",
    "verbosity",
)


def config_from_args(args: argparse.Namespace) -> RunConfig:
    obj: dict[str, Any] = {}
    if args.config:
        obj.update(_as_dict(load_json(args.config), "root"))
    for key in _OPTION_KEYS:
        value = getattr(args, key)
        if value is None:
            continue
        if key in ("save", "load") and value == "":
            value = default_cache_path()
        if key == "verbosity":
            # -vvv and beyond mean "as verbose as it gets"
            value = min(value, 2)
        obj[key] = value
    return parse_config(obj)


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bonsai_generator.py",
        description="Grow an ASCII-art bonsai tree in the terminal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pg = sub.add_parser(
        "grow",
        help="Grow a tree on the terminal (or print it with --print).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_growth_options(pg)

    pv = sub.add_parser(
        "validate",
        help="Validate settings and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_growth_options(pv)

    pt = sub.add_parser(
        "trace",
        help="Grow one tree off-screen and dump every write as JSON.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_growth_options(pt)
    pt.add_argument("--output", help="Write the trace here instead of stdout.")
    pt.add_argument("--width", type=int, default=80, help="Surface width (default 80).")
    pt.add_argument("--height", type=int, default=24, help="Surface height (default 24).")

    return p


# -------------------------
# Commands
# -------------------------


def cmd_grow(cfg: RunConfig) -> None:
    run_session(start_session(cfg))


def cmd_validate(cfg: RunConfig) -> None:
    g = cfg.growth
    print(f"multiplier: {g.multiplier}")
    print(f"life: {g.life_start}")
    print(f"leaves: {','.join(g.leaves)}")
    print(f"live: {g.live} time_step={g.time_step}")
    print(f"infinite: {cfg.infinite} time_wait={cfg.time_wait}")
    print(f"screensaver: {cfg.screensaver}")
    print(f"base: {cfg.base}")
    print(f"print: {cfg.print_tree}")
    print(f"verbosity: {g.verbosity}")
    print(f"seed: {cfg.seed if cfg.seed is not None else 'time-based'}")
    print(f"save: {cfg.save_path or '-'} load: {cfg.load_path or '-'}")
    if cfg.load_path is not None and os.path.exists(cfg.load_path):
        seed, branches = load_counts(cfg.load_path)
        print(f"loaded: seed={seed} branches={branches}")


def trace_tree(cfg: RunConfig, width: int, height: int) -> dict[str, Any]:
    _require(width > 0 and height > 0, "trace surface must be at least 1x1")
    session = start_session(cfg)
    tree = BufferSurface(width, height)
    grow_tree(
        cfg.growth,
        session.counters,
        tree,
        tree_origin(width, height),
        random.Random(session.seed),
    )
    return {
        "seed": session.seed,
        "multiplier": cfg.growth.multiplier,
        "life": cfg.growth.life_start,
        "branches": session.counters.branches,
        "shoots": session.counters.shoots,
        "writes": [[w.x, w.y, w.text, w.color.color, w.color.bold] for w in tree.writes],
    }


def cmd_trace(cfg: RunConfig, output: str | None, width: int, height: int) -> None:
    trace = trace_tree(cfg, width, height)
    if output is None:
        json.dump(trace, sys.stdout)
        sys.stdout.write("\n")
        return
    _ensure_parent_dir(output)
    with open(output, "w", encoding="utf-8") as f:
        json.dump(trace, f)
        f.write("\n")


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    try:
        cfg = config_from_args(args)
        if args.cmd == "grow":
            cmd_grow(cfg)
        elif args.cmd == "validate":
            cmd_validate(cfg)
        elif args.cmd == "trace":
            cmd_trace(cfg, args.output, args.width, args.height)
        else:
            raise AssertionError("unreachable")
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    except RenderError as e:
        print(f"Render error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
