# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for one part of the domain:
#
#   post_service        post lifecycle: slugs, publish/feature, view counting, listings
#   taxonomy_service    categories, tags and the post <-> taxonomy associations
#   comment_service     threaded comments and moderation
#   user_service        identity lookups
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  Failures are raised as ``blog_api.errors``
# exceptions, never signalled by returning None.
