from .account import Account
from .position import Position
from .price_quote import PriceQuote
from .custom_price import CustomPrice
from .fx_rate import FxRate
