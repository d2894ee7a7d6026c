"""Resource operations over an Admin Service session.

Every operation takes the :class:`~cmas_mcp.session.Session` as its first
argument and resource references built with :func:`cmas_mcp.models.reference`.
"""

from .collection import (
    get_collection,
    get_collection_member,
    invoke_collection_update,
    new_collection,
    remove_collection,
    set_collection,
)
from .device import get_device
from .membership import (
    add_direct_rule,
    add_exclude_rule,
    add_include_rule,
    add_membership_rule,
    add_query_rule,
    get_membership_rule,
    remove_membership_rule,
)
from .script import (
    get_script,
    get_script_execution_status,
    invoke_script,
    wait_script_execution,
)
from .variable import (
    get_collection_variable,
    get_device_variable,
    new_collection_variable,
    new_device_variable,
    remove_collection_variable,
    remove_device_variable,
    set_collection_variable,
    set_device_variable,
)

__all__ = [
    "get_collection",
    "new_collection",
    "set_collection",
    "remove_collection",
    "get_collection_member",
    "invoke_collection_update",
    "get_membership_rule",
    "add_membership_rule",
    "add_direct_rule",
    "add_query_rule",
    "add_include_rule",
    "add_exclude_rule",
    "remove_membership_rule",
    "get_device",
    "get_collection_variable",
    "new_collection_variable",
    "set_collection_variable",
    "remove_collection_variable",
    "get_device_variable",
    "new_device_variable",
    "set_device_variable",
    "remove_device_variable",
    "get_script",
    "invoke_script",
    "get_script_execution_status",
    "wait_script_execution",
]
