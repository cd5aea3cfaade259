"""core.utils package"""

from .contracts import (
    require,
    ensure,
)
from .naming import (
    to_snake_case,
    to_camel_case,
)

__all__ = [
    # contracts
    'require',
    'ensure',

    # naming
    'to_snake_case',
    'to_camel_case',
]
