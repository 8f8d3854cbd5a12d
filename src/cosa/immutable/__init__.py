"""Immutable wrappers and the default type handler registry."""

from __future__ import annotations

import datetime

from cosa.immutable.array import array
from cosa.immutable.core import (
    Builder,
    Immutable,
    ImmutableOptions,
    create,
    is_immutable,
    is_immutable_type,
    plain_copy,
    to_plain,
    use,
)
from cosa.immutable.date import date_handler
from cosa.immutable.defined import defined_object
from cosa.immutable.mapping import plain_object
from cosa.immutable.objectid import objectid

use("array", array)
use(datetime.date, date_handler)
use("objectid", objectid)
use(dict, defined_object)
use(plain_object)

__all__ = [
    "Builder",
    "Immutable",
    "ImmutableOptions",
    "create",
    "is_immutable",
    "is_immutable_type",
    "plain_copy",
    "to_plain",
    "use",
]
