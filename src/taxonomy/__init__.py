"""Tag lattices and change templates."""

from src.taxonomy.changes import Change, ChangeCatalog, Classification
from src.taxonomy.tags import Action, Effect, Reaction, close_tags, parse_tags

__all__ = [
    "Action",
    "Change",
    "ChangeCatalog",
    "Classification",
    "Effect",
    "Reaction",
    "close_tags",
    "parse_tags",
]
