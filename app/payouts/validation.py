from __future__ import annotations

from dataclasses import asdict
from typing import Any, Iterable, Mapping, Union

import pydantic

from app.payouts.errors import ValidationError
from app.payouts.model import PayoutRequest
from schemas import PayoutCreateRequest

# request sections FastAPI prefixes onto error locations
_LOC_SECTIONS = {"body", "query", "path", "header"}


def problems_from_errors(errors: Iterable[Mapping[str, Any]]) -> dict[str, str]:
    """Flatten pydantic error entries into {"recipient.account_name": "..."}."""
    problems: dict[str, str] = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in _LOC_SECTIONS:
            loc = loc[1:]
        key = ".".join(loc) or "request"
        problems.setdefault(key, str(err.get("msg", "invalid")))
    return problems


def validate_payout_request(data: Union[Mapping[str, Any], PayoutRequest]) -> PayoutRequest:
    """
    Run input through PayoutCreateRequest and return the normalized
    PayoutRequest, or raise ValidationError listing every problem.
    """
    if isinstance(data, PayoutRequest):
        data = asdict(data)
    try:
        model = PayoutCreateRequest.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        raise ValidationError(problems_from_errors(exc.errors()))
    return model.to_request()
