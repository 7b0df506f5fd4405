from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import PlainSerializer

# Hour quantities stay Decimal in Python and render as JSON numbers.
Hours = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
