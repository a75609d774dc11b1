"""Control-plane service definitions.

Each service knows its command line, environment and readiness probes; the
shared Service.start() launches it through the supervisor and blocks on the
prober.
"""

from .apiserver import ApiServer
from .base import Service, ServiceContext, path_env
from .containerd import Containerd
from .controller import ControllerManager
from .etcd import Etcd
from .kubectl import Kubectl, KubectlResult
from .kubelet import Kubelet
from .scheduler import Scheduler

__all__ = [
    # Base
    "Service",
    "ServiceContext",
    "path_env",
    # Services
    "Etcd",
    "ApiServer",
    "Containerd",
    "ControllerManager",
    "Scheduler",
    "Kubelet",
    # kubectl
    "Kubectl",
    "KubectlResult",
]
