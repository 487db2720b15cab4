"""Pair state repository — currently-open and blacklisted pairs.

Holds two disjoint sets of currency pairs in memory and persists them to a
flat ``KEY=VALUE`` file between restarts::

    CURRENTLY_OPEN=EURUSD,GBPUSD
    BLACKLIST=AUDUSD

The file is loaded once at startup and written once at shutdown.  Loading
is strict (any bad entry is fatal); saving is best-effort.
"""

import logging
import os
import pathlib

from dotenv import dotenv_values, set_key

from copybridge.errors import ConsistencyError, StateLoadError
from copybridge.strategy.models import CurrencyPair, parse_pair

logger = logging.getLogger("copybridge.state")

CURRENTLY_OPEN = "CURRENTLY_OPEN"
BLACKLIST = "BLACKLIST"


def _parse_entries(raw: str | None) -> list[CurrencyPair]:
    """Split a comma-joined value into validated pairs, skipping blanks."""
    pairs: list[CurrencyPair] = []
    for entry in (raw or "").split(","):
        if not entry.strip():
            continue
        pairs.append(parse_pair(entry))
    return pairs


def _join(pairs: set[CurrencyPair]) -> str:
    return ",".join(sorted(p.code for p in pairs))


class PairStateStore:
    """Owns the ``currently_open`` and ``blacklist`` sets.

    A pair is *fresh* when in neither set, *open* when in
    ``currently_open`` and *blacklisted* when in ``blacklist``.  Being in
    both sets at once is a :class:`ConsistencyError`.

    Args:
        path: Location of the persisted state file.
    """

    def __init__(self, path: str | pathlib.Path) -> None:
        self._path = pathlib.Path(path)
        self._currently_open: set[CurrencyPair] = set()
        self._blacklist: set[CurrencyPair] = set()

    @property
    def path(self) -> pathlib.Path:
        return self._path

    # ── Queries ──────────────────────────────────────────────────────────

    def is_open(self, pair: CurrencyPair) -> bool:
        return pair in self._currently_open

    def is_blacklisted(self, pair: CurrencyPair) -> bool:
        return pair in self._blacklist

    @property
    def open_pairs(self) -> frozenset[CurrencyPair]:
        return frozenset(self._currently_open)

    @property
    def blacklisted_pairs(self) -> frozenset[CurrencyPair]:
        return frozenset(self._blacklist)

    def snapshot(self) -> dict:
        """Return both sets as sorted lists of codes."""
        return {
            "currently_open": sorted(p.code for p in self._currently_open),
            "blacklist": sorted(p.code for p in self._blacklist),
        }

    # ── Mutation ─────────────────────────────────────────────────────────

    def mark_open(self, pair: CurrencyPair) -> None:
        """Move a fresh pair into ``currently_open``."""
        if pair in self._blacklist:
            raise ConsistencyError(
                f"cannot mark {pair} open: it is blacklisted"
            )
        self._currently_open.add(pair)
        self._check(pair)

    def mark_blacklisted(self, pair: CurrencyPair) -> None:
        """Move a pair from ``currently_open`` (if present) to ``blacklist``."""
        self._currently_open.discard(pair)
        self._blacklist.add(pair)
        self._check(pair)

    def clear(self, pair: CurrencyPair) -> None:
        """Return *pair* to the fresh state.

        Raises:
            ConsistencyError: If the pair is somehow in both sets.
        """
        self._check(pair)
        self._currently_open.discard(pair)
        self._blacklist.discard(pair)

    def _check(self, pair: CurrencyPair) -> None:
        if pair in self._currently_open and pair in self._blacklist:
            raise ConsistencyError(
                f"{pair} is in both currently-open and blacklist"
            )

    # ── Persistence ──────────────────────────────────────────────────────

    def load(self) -> None:
        """Replace in-memory state with the contents of the state file.

        A missing file is treated as an empty state (first run).

        Raises:
            StateLoadError: On a missing key, an unparsable entry, or a
                pair present in both sets.
        """
        if not self._path.exists():
            logger.info("No pair state at %s — starting empty.", self._path)
            self._currently_open = set()
            self._blacklist = set()
            return

        values = dotenv_values(self._path)
        missing = [
            key for key in (CURRENTLY_OPEN, BLACKLIST) if values.get(key) is None
        ]
        if missing:
            raise StateLoadError(
                f"pair state in {self._path} is missing {', '.join(missing)}"
            )
        try:
            currently_open = _parse_entries(values.get(CURRENTLY_OPEN))
            blacklist = _parse_entries(values.get(BLACKLIST))
        except ValueError as exc:
            raise StateLoadError(
                f"corrupt pair state in {self._path}: {exc}"
            ) from exc

        both = set(currently_open) & set(blacklist)
        if both:
            codes = ", ".join(sorted(p.code for p in both))
            raise StateLoadError(
                f"pair(s) {codes} in both {CURRENTLY_OPEN} and {BLACKLIST} "
                f"in {self._path}"
            )

        self._currently_open = set(currently_open)
        self._blacklist = set(blacklist)
        logger.info(
            "Loaded pair state: %d open, %d blacklisted.",
            len(self._currently_open), len(self._blacklist),
        )

    def save(self) -> bool:
        """Write both sets to the state file.

        Returns ``True`` on success.  I/O failures are logged and reported
        through the return value; the previous file contents stay in effect.

        Both keys go to a sibling temp file which then replaces the state
        file in one step, so a failure never leaves one key updated and
        the other stale.
        """
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text("", encoding="utf-8")
            set_key(tmp_path, CURRENTLY_OPEN, _join(self._currently_open),
                    quote_mode="never")
            set_key(tmp_path, BLACKLIST, _join(self._blacklist),
                    quote_mode="never")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            logger.error("Unable to save pair state to %s: %s", self._path, exc)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove %s", tmp_path)
            return False
        logger.info("Saved pair state to %s.", self._path)
        return True
