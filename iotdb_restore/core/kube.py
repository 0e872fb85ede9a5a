"""Kubernetes client loading and pod inspection."""

import logging
import os
from typing import Any, Dict, Optional

from kubernetes import client, config as kube_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .errors import NotFoundError, RemoteConnectionError

DEFAULT_KUBECONFIG = os.path.join("~", ".kube", "config")


def load_kube_client(kubeconfig: str = "", context: str = "",
                     logger: Optional[logging.Logger] = None) -> client.CoreV1Api:
    """Build a CoreV1 API client.

    An explicit kubeconfig wins. Otherwise the in-cluster service account is
    tried first, then ``~/.kube/config``.

    Args:
        kubeconfig: Optional path to a kubeconfig file. ``~`` is expanded.
        context: Optional kubeconfig context name.
        logger: Logger to use.

    Returns:
        A ``CoreV1Api`` instance.

    Raises:
        RemoteConnectionError: If no usable configuration is found.
    """
    logger = logger or logging.getLogger(__name__)
    context = context or None

    try:
        if kubeconfig:
            path = os.path.expanduser(kubeconfig)
            logger.debug(f"Loading kubeconfig from {path}")
            kube_config.load_kube_config(config_file=path, context=context)
        else:
            try:
                kube_config.load_incluster_config()
                logger.debug("Using in-cluster Kubernetes configuration")
            except ConfigException:
                default_path = os.path.expanduser(DEFAULT_KUBECONFIG)
                if not os.path.exists(default_path):
                    raise RemoteConnectionError(
                        f"Not running in a cluster and no kubeconfig found at {default_path}"
                    )
                logger.debug(f"Loading default kubeconfig from {default_path}")
                kube_config.load_kube_config(config_file=default_path, context=context)
    except ConfigException as e:
        raise RemoteConnectionError(f"Invalid Kubernetes configuration: {e}") from e

    return client.CoreV1Api()


class PodInspector:
    """Reads pod metadata and status."""

    def __init__(self, core_api: client.CoreV1Api, namespace: str,
                 logger: Optional[logging.Logger] = None):
        self.core_api = core_api
        self.namespace = namespace
        self.logger = logger or logging.getLogger(__name__)

    def get_pod(self, pod_name: str):
        """Fetch the pod object.

        Raises:
            NotFoundError: If the pod does not exist.
            RemoteConnectionError: On any other API failure.
        """
        try:
            return self.core_api.read_namespaced_pod(name=pod_name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(
                    f"Pod {self.namespace}/{pod_name} not found"
                ) from e
            raise RemoteConnectionError(
                f"Failed to read pod {self.namespace}/{pod_name}: {e.reason}"
            ) from e

    def exists(self, pod_name: str) -> bool:
        try:
            self.get_pod(pod_name)
        except NotFoundError:
            return False
        return True

    def phase(self, pod_name: str) -> str:
        return self.get_pod(pod_name).status.phase

    def is_running(self, pod_name: str) -> bool:
        return self.phase(pod_name) == "Running"

    def describe(self, pod_name: str) -> Dict[str, Any]:
        """Summarize a pod for logs and the CLI."""
        pod = self.get_pod(pod_name)
        return {
            'name': pod.metadata.name,
            'namespace': pod.metadata.namespace,
            'phase': pod.status.phase,
            'node': pod.spec.node_name,
            'created': pod.metadata.creation_timestamp,
            'containers': [
                {'name': container.name, 'image': container.image}
                for container in pod.spec.containers
            ],
        }
