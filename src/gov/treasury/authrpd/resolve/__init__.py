"""
Region and tenant resolution.

- region.py: region code -> top region code, with cycle detection
- tenant.py: top region -> audiences of its active RPD instances

Both resolvers cache through ``gov.treasury.authrpd.cache`` and expose
``invalidate`` for the administrative code paths that change their inputs.
"""
