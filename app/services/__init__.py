# Services package.
#
# The cache-aside coordinator, split by aggregate:
#
#   post_service    : create / list / get / delete posts
#   comment_service : append-only comment creation
#
# All service functions accept an AsyncSession as their first argument
# and build an EntityStore over it; the store commits its own writes so
# cache population always follows a committed row.
