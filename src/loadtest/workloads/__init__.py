"""
Built-in workloads, selectable by name on the command line.
"""

from .consumer import ConsumerWorkload
from .crud import CrudWorkload
from .producer import ProducerWorkload

BUILTIN_WORKLOADS = {
    CrudWorkload.name: CrudWorkload,
    ProducerWorkload.name: ProducerWorkload,
    ConsumerWorkload.name: ConsumerWorkload,
}

__all__ = [
    "BUILTIN_WORKLOADS",
    "ConsumerWorkload",
    "CrudWorkload",
    "ProducerWorkload",
]
