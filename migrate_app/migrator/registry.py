"""
Stage registry.

The order of the registry is the execution order of a full migration. Posts
depend on the users stage because authorship is rewritten through the identity
map it populates.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Mapping, Tuple

from .errors import ConfigurationError

STAGE_USERS = "users"
STAGE_OPTIONS = "options"
STAGE_POSTS = "posts"
STAGE_MEDIA = "media"
STAGE_EXTRA = "extra"


@dataclass(frozen=True)
class StageDescriptor:
    """Metadata describing a migration stage."""

    name: str
    title: str
    requires: Tuple[str, ...] = ()
    summary: str | None = None


def get_stage_registry() -> Mapping[str, StageDescriptor]:
    """Return the ordered registry of migration stages."""

    return OrderedDict(
        (
            (
                STAGE_USERS,
                StageDescriptor(
                    name=STAGE_USERS,
                    title="Users",
                    summary="Merge users into the network user table and record identity mappings.",
                ),
            ),
            (
                STAGE_OPTIONS,
                StageDescriptor(
                    name=STAGE_OPTIONS,
                    title="Options",
                    summary="Copy site options, keeping the target's core options intact.",
                ),
            ),
            (
                STAGE_POSTS,
                StageDescriptor(
                    name=STAGE_POSTS,
                    title="Posts",
                    requires=(STAGE_USERS,),
                    summary="Copy posts, post meta and taxonomy, then rewrite authorship.",
                ),
            ),
            (
                STAGE_MEDIA,
                StageDescriptor(
                    name=STAGE_MEDIA,
                    title="Media metadata",
                    summary="Carry attachment file paths and metadata.",
                ),
            ),
            (
                STAGE_EXTRA,
                StageDescriptor(
                    name=STAGE_EXTRA,
                    title="Extra tables",
                    summary="Recreate and copy plugin tables under the target prefix.",
                ),
            ),
        )
    )


def stage_names() -> Tuple[str, ...]:
    return tuple(get_stage_registry().keys())


def resolve_stages(
    stage: str | None = None,
    *,
    registry: Mapping[str, StageDescriptor] | None = None,
) -> Tuple[StageDescriptor, ...]:
    """
    Map a requested stage to the descriptors to run, raising on unknown names.

    ``None`` selects every stage in registry order.
    """

    registry = registry or get_stage_registry()
    if stage is None:
        return tuple(registry.values())
    if stage not in registry:
        raise ConfigurationError(
            f"Unknown migration stage '{stage}'. Expected one of: " + ", ".join(registry.keys()) + "."
        )
    return (registry[stage],)
