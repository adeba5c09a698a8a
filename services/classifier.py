"""
Position classification.

Pure functions over a position's symbol, name, protocol and declared type,
driven by a `ClassifierTables` value so the symbol lists can be swapped or
extended without touching control flow:

- asset class: crypto | equity | metals | cash | other
- sub-category: stablecoins | perp_margin | perp_trade | spot | cash | none
- exposure class: perp-long | perp-short | perp-margin | perp-spot |
  cash | borrowed-cash | spot-long | spot-short
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Optional

_PERP_MARKER_RE = re.compile(r"\b(long|short)\b\s*(?:\(|$)", re.IGNORECASE)
_PERP_SUFFIX_RE = re.compile(r"-perp\b", re.IGNORECASE)

_USD_STABLES = frozenset({
    "usd", "usdt", "usdc", "dai", "busd", "tusd", "usdp", "usdd", "frax", "lusd",
    "gusd", "susd", "cusd", "ust", "mim", "fei", "ousd", "dola", "rai",
    "pyusd", "usdm", "gho", "crvusd", "mkusd", "usds", "dusd", "husd", "xusd",
    "usde", "susde", "wusde", "usdai", "usd0", "usd0++", "fdusd", "usdb", "usdx",
    "usdy", "usdz", "zusd", "musd", "pusd", "ausd", "rusd", "cgusd",
    "wxdai", "xdai", "sdai", "susds", "stusdt",
})
_EUR_STABLES = frozenset({
    "euroc", "eurt", "ceur", "ageur", "jeur", "eur", "eurc", "eure", "eura", "steur", "seur",
})
_GBP_STABLES = frozenset({"gbpt", "gbpc"})

UNKNOWN_VENUE = "Unknown"


@dataclass(frozen=True)
class ClassifierTables:
    usd_stablecoins: frozenset[str] = _USD_STABLES
    eur_stablecoins: frozenset[str] = _EUR_STABLES
    gbp_stablecoins: frozenset[str] = _GBP_STABLES
    fiat_currencies: frozenset[str] = frozenset({
        "usd", "eur", "gbp", "chf", "jpy", "cny", "cad", "aud", "nzd",
        "hkd", "sgd", "sek", "nok", "dkk", "krw", "inr", "brl", "mxn",
        "zar", "aed", "thb", "pln", "czk", "ils", "php", "idr", "myr",
        "try", "rub", "huf", "ron", "bgn", "hrk", "isk", "twd", "vnd",
    })
    btc_like: frozenset[str] = frozenset({
        "btc", "wbtc", "btcb", "renbtc", "hbtc", "sbtc", "tbtc", "pbtc", "obtc", "fbtc",
        "mbtc", "ibtc", "bbtc", "ebtc", "xbtc", "rbtc", "btc.b", "cbbtc", "lbtc", "btcpx",
    })
    eth_like: frozenset[str] = frozenset({
        "eth", "weth", "steth", "wsteth", "reth", "cbeth", "seth", "meth", "frxeth",
        "sfrxeth", "oeth", "ankreth", "seth2", "reth2", "eeth", "weeth", "ezeth",
        "rseth", "pufeth", "sweth", "ethx", "unsteth",
    })
    sol_like: frozenset[str] = frozenset({
        "sol", "wsol", "msol", "jitosol", "bsol", "stsol", "scnsol", "lsol", "hsol",
        "csol", "dsol", "vsol", "bonksol", "jupsol", "inf", "phsol", "jsol",
    })
    etfs: frozenset[str] = frozenset({
        "spy", "voo", "ivv", "qqq", "qqqm", "dia", "iwm", "vti", "vtv", "vug", "schd",
        "schx", "schb", "splg", "itot", "xlk", "xlf", "xle", "xlv", "xli", "xlp", "xly",
        "vgt", "vht", "vnq", "vxus", "vea", "vwo", "efa", "eem", "iefa", "iemg", "vgk",
        "bnd", "agg", "lqd", "tlt", "ief", "shy", "tip", "arkk", "soxx", "smh", "kweb",
        "tqqq", "sqqq", "soxl", "gbtc", "ethe", "bito", "ibit", "arkb", "ewg", "ezu", "fez",
    })
    metals_gold: frozenset[str] = frozenset({
        "xaut", "paxg", "xau", "tgold", "dgld", "pmgt", "cache", "cgo",
        "gld", "iau", "gldm", "sgol", "phys", "bar", "aau", "aaau",
    })
    metals_silver: frozenset[str] = frozenset({"xag", "xage", "slv", "sivr", "pslv"})
    metals_platinum: frozenset[str] = frozenset({"pplt", "xpt"})
    metals_palladium: frozenset[str] = frozenset({"pall", "xpd"})
    metals_miners: frozenset[str] = frozenset({"gdx", "gdxj", "sil", "silj", "ring"})
    perp_protocols: frozenset[str] = frozenset({
        "hyperliquid", "lighter", "ethereal", "vertex", "drift",
        "hyperliquid perp", "hyperliquid perpetual", "lighter exchange",
        "ethereal exchange", "vertex protocol", "vertex exchange",
        "drift protocol", "drift exchange",
    })
    # substring match catches venue labels such as "Hyperliquid Spot Margin"
    perp_protocol_fragments: tuple[str, ...] = ("hyperliquid", "lighter", "ethereal", "vertex", "drift")
    pendle_prefixes: tuple[str, ...] = ("pt-", "yt-", "pt_", "yt_")
    pendle_usd_fragments: tuple[str, ...] = (
        "usd", "dai", "frax", "gho", "lusd", "mkusd", "crvusd", "pyusd", "dola", "mim", "fdusd",
    )
    stablecoin_suffixes: tuple[str, ...] = ("dai", "usd", "usdc", "usdt", "frax")
    extra_stablecoins: frozenset[str] = field(default_factory=frozenset)

    @property
    def stablecoins(self) -> frozenset[str]:
        return self.usd_stablecoins | self.eur_stablecoins | self.gbp_stablecoins | self.extra_stablecoins

    @property
    def metals(self) -> frozenset[str]:
        return (
            self.metals_gold | self.metals_silver | self.metals_platinum
            | self.metals_palladium | self.metals_miners
        )

    def with_stablecoins(self, *symbols: str) -> "ClassifierTables":
        return replace(self, extra_stablecoins=self.extra_stablecoins | {s.lower() for s in symbols})


DEFAULT_TABLES = ClassifierTables()


@dataclass(frozen=True)
class PerpTradeInfo:
    is_perp_trade: bool = False
    is_long: bool = False
    is_short: bool = False


@dataclass(frozen=True)
class Classification:
    asset_class: str
    sub_category: str
    is_debt: bool


def _norm(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def detect_perp_trade(name: Optional[str]) -> PerpTradeInfo:
    """
    "BTC Long (Hyperliquid)" and "SOL Short" are perp trades; "Longhorn Token"
    is not. A "-PERP" symbol suffix marks a trade without a direction.
    """
    text = name or ""
    m = _PERP_MARKER_RE.search(text)
    if m:
        side = m.group(1).lower()
        return PerpTradeInfo(True, side == "long", side == "short")
    if _PERP_SUFFIX_RE.search(text):
        return PerpTradeInfo(True, False, False)
    return PerpTradeInfo()


class PositionClassifier:
    def __init__(self, tables: ClassifierTables = DEFAULT_TABLES):
        self.tables = tables

    # ---------- symbol tables ----------
    def is_perp_protocol(self, protocol: Optional[str]) -> bool:
        p = _norm(protocol)
        if not p:
            return False
        return p in self.tables.perp_protocols or any(f in p for f in self.tables.perp_protocol_fragments)

    def perp_venue(self, protocol: Optional[str]) -> str:
        """Venue label for grouping: "Hyperliquid Spot Margin" -> "Hyperliquid"."""
        p = _norm(protocol)
        for fragment in self.tables.perp_protocol_fragments:
            if fragment in p:
                return fragment.capitalize()
        return (protocol or "").strip() or UNKNOWN_VENUE

    def _is_pendle(self, s: str) -> bool:
        return s.startswith(self.tables.pendle_prefixes)

    def is_stablecoin(self, symbol: Optional[str]) -> bool:
        s = _norm(symbol)
        if s in self.tables.stablecoins:
            return True
        if self._is_pendle(s):
            return any(f in s for f in self.tables.pendle_usd_fragments) or "eur" in s or "gbp" in s
        return False

    def get_underlying_fiat(self, symbol: Optional[str]) -> Optional[str]:
        """Pegged fiat for a stablecoin or fiat symbol (USDC -> USD, EURC -> EUR), else None."""
        s = _norm(symbol)
        t = self.tables
        if s in t.fiat_currencies:
            return s.upper()
        if s in t.usd_stablecoins:
            return "USD"
        if s in t.eur_stablecoins:
            return "EUR"
        if s in t.gbp_stablecoins:
            return "GBP"
        if self._is_pendle(s):
            if any(f in s for f in t.pendle_usd_fragments):
                return "USD"
            if "eur" in s:
                return "EUR"
            if "gbp" in s:
                return "GBP"
        if s.endswith(t.stablecoin_suffixes):
            return "USD"
        return None

    # ---------- asset class ----------
    def get_asset_class(self, symbol: Optional[str], declared: Optional[str] = None) -> str:
        s = _norm(symbol)
        d = _norm(declared)
        t = self.tables
        if d == "cash" or s.startswith("cash_"):
            return "cash"
        if d == "metals" or s in t.metals:
            return "metals"
        if d in ("stock", "etf", "equity"):
            return "equity"
        if d == "crypto":
            return "crypto"
        if d == "other":
            return "other"
        # manual / undeclared: fall back to the symbol
        if s in t.fiat_currencies:
            return "cash"
        if s in t.stablecoins or s in t.btc_like or s in t.eth_like or s in t.sol_like:
            return "crypto"
        if s in t.etfs or s.split(".", 1)[0] in t.etfs:
            return "equity"
        return "other"

    def effective_asset_class(self, position: Any) -> str:
        override = getattr(position, "asset_class_override", None)
        if override:
            return override
        return self.get_asset_class(getattr(position, "symbol", None), getattr(position, "asset_class", None))

    # ---------- classification ----------
    def perp_trade_info(self, position: Any) -> PerpTradeInfo:
        name = getattr(position, "name", None) or ""
        symbol = getattr(position, "symbol", None) or ""
        info = detect_perp_trade(name)
        explicit_suffix = bool(_PERP_SUFFIX_RE.search(symbol))
        if not info.is_perp_trade and explicit_suffix:
            info = PerpTradeInfo(True, False, False)
        if not info.is_perp_trade:
            return info
        # A long/short marker only means a trade when it sits on a perp venue
        # or the symbol itself is a perp contract.
        if self.is_perp_protocol(getattr(position, "protocol", None)) or explicit_suffix or _PERP_SUFFIX_RE.search(name):
            return info
        return PerpTradeInfo()

    def classify(self, position: Any) -> Classification:
        asset_class = self.effective_asset_class(position)
        is_debt = bool(getattr(position, "is_debt", False))
        symbol = getattr(position, "symbol", None)

        perp = self.perp_trade_info(position)
        if perp.is_perp_trade:
            # shorts are borrowed exposure; the upstream flag is kept otherwise
            return Classification(asset_class, "perp_trade", is_debt or perp.is_short)

        if asset_class == "cash":
            return Classification(asset_class, "cash", is_debt)
        if self.is_stablecoin(symbol):
            if self.is_perp_protocol(getattr(position, "protocol", None)):
                return Classification(asset_class, "perp_margin", is_debt)
            return Classification(asset_class, "stablecoins", is_debt)
        if asset_class == "crypto":
            return Classification(asset_class, "spot", is_debt)
        return Classification(asset_class, "none", is_debt)

    def classify_exposure(self, position: Any, value: float) -> str:
        """Exposure bucket for an enriched position; negative value counts as debt."""
        is_debt = bool(getattr(position, "is_debt", False)) or value < 0
        symbol = getattr(position, "symbol", None)
        perp = self.perp_trade_info(position)
        if perp.is_perp_trade:
            return "perp-short" if (perp.is_short or is_debt) else "perp-long"
        if self.is_perp_protocol(getattr(position, "protocol", None)):
            if self.is_stablecoin(symbol):
                return "perp-margin"
            return "perp-spot"
        if self.is_stablecoin(symbol) or self.effective_asset_class(position) == "cash":
            return "borrowed-cash" if is_debt else "cash"
        return "spot-short" if is_debt else "spot-long"


default_classifier = PositionClassifier()


def classify(position: Any) -> Classification:
    return default_classifier.classify(position)


def is_stablecoin(symbol: Optional[str]) -> bool:
    return default_classifier.is_stablecoin(symbol)


def is_perp_protocol(protocol: Optional[str]) -> bool:
    return default_classifier.is_perp_protocol(protocol)


def get_asset_class(symbol: Optional[str], declared: Optional[str] = None) -> str:
    return default_classifier.get_asset_class(symbol, declared)
