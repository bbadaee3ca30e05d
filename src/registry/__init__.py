"""Part identity registry and part-kind tables."""

from src.registry.kinds import Orientation, PartKind, PartKindTable, coerce_value, parameter_type
from src.registry.parameters import (
    ANY,
    EIGHTH,
    ELEVENTH,
    FIFTH,
    FIRST,
    FOURTH,
    LAST,
    NINTH,
    SECOND,
    SEVENTH,
    SIXTH,
    TENTH,
    THIRD,
    TWELFTH,
    Index,
    Parameter,
    Value,
    in_,
    nin,
)
from src.registry.parts import (
    Part,
    PartCreator,
    PartFinder,
    PartKey,
    PartListFinder,
    PartRegistry,
    PartSignature,
)

__all__ = [
    "ANY",
    "EIGHTH",
    "ELEVENTH",
    "FIFTH",
    "FIRST",
    "FOURTH",
    "LAST",
    "NINTH",
    "SECOND",
    "SEVENTH",
    "SIXTH",
    "TENTH",
    "THIRD",
    "TWELFTH",
    "Index",
    "Orientation",
    "Parameter",
    "Part",
    "PartCreator",
    "PartFinder",
    "PartKey",
    "PartKind",
    "PartKindTable",
    "PartListFinder",
    "PartRegistry",
    "PartSignature",
    "Value",
    "coerce_value",
    "in_",
    "nin",
    "parameter_type",
]
