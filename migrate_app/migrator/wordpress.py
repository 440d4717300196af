"""WordPress schema facts the stages rely on."""

from __future__ import annotations

# Unprefixed WordPress core table names; anything else under a prefix is an "extra" table.
CORE_TABLES = frozenset(
    {
        "posts",
        "postmeta",
        "comments",
        "commentmeta",
        "terms",
        "termmeta",
        "term_taxonomy",
        "term_relationships",
        "options",
        "users",
        "usermeta",
        "links",
    }
)

# Network-wide tables living under the base prefix of a multisite install.
NETWORK_TABLES = frozenset(
    {
        "blogs",
        "blogmeta",
        "site",
        "sitemeta",
        "signups",
        "registration_log",
    }
)

# Options that identify the target site and are never overwritten or deleted.
CORE_OPTIONS = ("siteurl", "home", "blogname", "admin_email")

# Content tables truncated by the content cleanup, in deletion order.
CONTENT_TABLES = ("posts", "postmeta", "terms", "term_taxonomy", "term_relationships")

POST_DATE_COLUMNS = ("post_date", "post_date_gmt", "post_modified", "post_modified_gmt")
ZERO_DATE = "0000-00-00 00:00:00"
EPOCH_DATE = "1970-01-01 00:00:00"

AUTHOR_HOLDING_COLUMN = "old_post_author"

ATTACHED_FILE_KEY = "_wp_attached_file"
ATTACHMENT_METADATA_KEY = "_wp_attachment_metadata"
ATTACHMENT_META_KEYS = (ATTACHED_FILE_KEY, ATTACHMENT_METADATA_KEY)

# User meta keys that embed the table prefix and must follow the user into the target site.
PREFIXED_USERMETA_KEYS = ("capabilities", "user_level")


def blog_prefix(base_prefix: str, site_id: int) -> str:
    """Table prefix WordPress assigns to a network site."""

    if int(site_id) <= 1:
        return base_prefix
    return f"{base_prefix}{int(site_id)}_"
