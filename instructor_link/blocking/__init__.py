"""
Blocking strategies for InstructorLink.

Restricts the provider records compared with each instructor to last-name
and department blocks instead of the full cross product.
"""
