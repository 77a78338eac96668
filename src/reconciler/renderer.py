"""Resource rendering.

Pure mapping from (normalized spec, resolved references, transport plan) to
the child manifests of an MCPServer. Manifests are camelCase dicts in the
shape the API server accepts. Rendering never touches the cluster and never
mutates its inputs; the same inputs always produce the same manifests.
"""

import copy
import hashlib
import json
from typing import Any

from src.models.crds import OwnerReference
from src.reconciler.normalizer import MAIN_CONTAINER_NAME, NormalizedSpec
from src.reconciler.resolver import ResolvedRefs
from src.reconciler.transport import ANNOTATION_PREFIX, TransportPlan

MANAGED_BY = "kmcp"
APP_NAME = "mcp-server"
PORT_NAME = "mcp"
SECRET_MOUNT_ROOT = "/etc/mcp/secrets"
CONFIGMAP_MOUNT_ROOT = "/etc/mcp/configmaps"
CONFIG_HASH_ANNOTATION = f"{ANNOTATION_PREFIX}/config-hash"

# Apply order: dependencies before the objects that reference them.
APPLY_ORDER = ("ServiceAccount", "ConfigMap", "Deployment", "Service")


def selector_labels(name: str) -> dict[str, str]:
    """Labels identifying the pods of one MCPServer."""
    return {
        "app.kubernetes.io/name": APP_NAME,
        "app.kubernetes.io/instance": name,
    }


def common_labels(name: str) -> dict[str, str]:
    """Labels carried by every child resource of an MCPServer."""
    return {
        **selector_labels(name),
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }


def configmap_name(name: str) -> str:
    return f"{name}-config"


def _volume_name(prefix: str, ref: str) -> str:
    name = f"{prefix}-{ref}"
    if len(name) <= 63 and "." not in ref:
        return name
    # Rewritten names get a digest of the original so they stay distinct
    digest = hashlib.sha256(ref.encode()).hexdigest()[:8]
    stem = name.replace(".", "-")[:54].rstrip("-")
    return f"{stem}-{digest}"


def _metadata(
    name: str,
    namespace: str,
    labels: dict[str, str],
    owner: OwnerReference,
    annotations: dict[str, str] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "labels": labels,
    }
    if annotations:
        metadata["annotations"] = annotations
    metadata["ownerReferences"] = [owner.to_dict()]
    return metadata


def render_service_account(
    name: str, namespace: str, spec: NormalizedSpec, owner: OwnerReference
) -> dict[str, Any] | None:
    """Render the ServiceAccount, or None when the spec does not ask for one."""
    config = spec.deployment.serviceAccount
    if config is None:
        return None
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(
            name,
            namespace,
            {**config.labels, **common_labels(name)},
            owner,
            dict(config.annotations),
        ),
    }


def render_configmap(
    name: str, namespace: str, spec: NormalizedSpec, owner: OwnerReference
) -> dict[str, Any] | None:
    """Render the ConfigMap holding plain environment values, if there are any."""
    env = spec.deployment.env
    if not env:
        return None
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _metadata(configmap_name(name), namespace, common_labels(name), owner),
        "data": dict(sorted(env.items())),
    }


def _main_container(
    name: str,
    spec: NormalizedSpec,
    refs: ResolvedRefs,
    plan: TransportPlan,
) -> dict[str, Any]:
    deployment = spec.deployment
    container: dict[str, Any] = {"name": MAIN_CONTAINER_NAME, "image": refs.image}
    if deployment.imagePullPolicy:
        container["imagePullPolicy"] = deployment.imagePullPolicy

    if plan.command:
        container["command"] = list(plan.command)
        if plan.args:
            container["args"] = list(plan.args)
    else:
        if deployment.cmd:
            container["command"] = [deployment.cmd]
        if deployment.args:
            container["args"] = list(deployment.args)

    container["ports"] = [
        {"name": PORT_NAME, "containerPort": plan.container_port, "protocol": "TCP"}
    ]
    if plan.env:
        container["env"] = [{"name": key, "value": value} for key, value in plan.env]
    if deployment.env:
        container["envFrom"] = [{"configMapRef": {"name": configmap_name(name)}}]

    mounts = [copy.deepcopy(mount) for mount in plan.volume_mounts]
    for secret in refs.secrets:
        mounts.append(
            {
                "name": _volume_name("secret", secret),
                "mountPath": f"{SECRET_MOUNT_ROOT}/{secret}",
                "readOnly": True,
            }
        )
    for config_map in refs.config_maps:
        mounts.append(
            {
                "name": _volume_name("configmap", config_map),
                "mountPath": f"{CONFIGMAP_MOUNT_ROOT}/{config_map}",
                "readOnly": True,
            }
        )
    mounts.extend(copy.deepcopy(deployment.volumeMounts))
    if mounts:
        container["volumeMounts"] = mounts

    container["readinessProbe"] = {"tcpSocket": {"port": PORT_NAME}, "periodSeconds": 5}
    if deployment.resources:
        container["resources"] = copy.deepcopy(deployment.resources)
    if deployment.securityContext:
        container["securityContext"] = copy.deepcopy(deployment.securityContext)
    return container


def _pod_volumes(spec: NormalizedSpec, refs: ResolvedRefs, plan: TransportPlan) -> list[dict]:
    volumes = [copy.deepcopy(volume) for volume in plan.volumes]
    for secret in refs.secrets:
        volumes.append({"name": _volume_name("secret", secret), "secret": {"secretName": secret}})
    for config_map in refs.config_maps:
        volumes.append(
            {"name": _volume_name("configmap", config_map), "configMap": {"name": config_map}}
        )
    volumes.extend(copy.deepcopy(spec.deployment.volumes))
    return volumes


def _config_hash(spec: NormalizedSpec) -> str:
    payload = json.dumps(spec.deployment.env, sort_keys=True)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


def render_deployment(
    name: str,
    namespace: str,
    spec: NormalizedSpec,
    refs: ResolvedRefs,
    plan: TransportPlan,
    owner: OwnerReference,
) -> dict[str, Any]:
    """Render the Deployment running the MCP server."""
    deployment = spec.deployment

    pod_annotations = dict(deployment.annotations)
    if deployment.env:
        pod_annotations[CONFIG_HASH_ANNOTATION] = _config_hash(spec)
    pod_metadata: dict[str, Any] = {"labels": {**deployment.labels, **common_labels(name)}}
    if pod_annotations:
        pod_metadata["annotations"] = pod_annotations

    pod_spec: dict[str, Any] = {}
    if plan.init_containers:
        pod_spec["initContainers"] = [copy.deepcopy(c) for c in plan.init_containers]
    pod_spec["containers"] = [
        _main_container(name, spec, refs, plan),
        *copy.deepcopy(deployment.sidecars),
    ]
    volumes = _pod_volumes(spec, refs, plan)
    if volumes:
        pod_spec["volumes"] = volumes

    if deployment.serviceAccount is not None:
        pod_spec["serviceAccountName"] = name
    elif deployment.serviceAccountName:
        pod_spec["serviceAccountName"] = deployment.serviceAccountName

    if refs.image_pull_secrets:
        pod_spec["imagePullSecrets"] = [{"name": secret} for secret in refs.image_pull_secrets]
    if deployment.podSecurityContext:
        pod_spec["securityContext"] = copy.deepcopy(deployment.podSecurityContext)
    if deployment.tolerations:
        pod_spec["tolerations"] = copy.deepcopy(deployment.tolerations)
    if deployment.affinity:
        pod_spec["affinity"] = copy.deepcopy(deployment.affinity)
    if deployment.nodeSelector:
        pod_spec["nodeSelector"] = dict(deployment.nodeSelector)

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(name, namespace, common_labels(name), owner),
        "spec": {
            "replicas": spec.replicas,
            "selector": {"matchLabels": selector_labels(name)},
            "template": {"metadata": pod_metadata, "spec": pod_spec},
        },
    }


def render_service(
    name: str,
    namespace: str,
    spec: NormalizedSpec,
    plan: TransportPlan,
    owner: OwnerReference,
) -> dict[str, Any]:
    """Render the ClusterIP Service exposing the transport's port.

    The annotations carry the client-facing settings (transport, path,
    timeout) for anything that builds a remote-server entry from it.
    """
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(
            name,
            namespace,
            common_labels(name),
            owner,
            dict(plan.service_annotations),
        ),
        "spec": {
            "type": "ClusterIP",
            "selector": selector_labels(name),
            "ports": [
                {
                    "name": PORT_NAME,
                    "port": spec.port,
                    "targetPort": plan.container_port,
                    "protocol": "TCP",
                    "appProtocol": plan.scheme,
                }
            ],
        },
    }


def render(
    name: str,
    namespace: str,
    spec: NormalizedSpec,
    refs: ResolvedRefs,
    plan: TransportPlan,
    owner: OwnerReference,
) -> list[dict[str, Any]]:
    """Render every desired child resource in apply order.

    Args:
        name: The MCPServer name; child names derive from it.
        namespace: The MCPServer namespace.
        spec: The normalized spec.
        refs: The verified references.
        plan: The transport plan.
        owner: Owner reference stamped on every child.

    Returns:
        Manifests ordered ServiceAccount, ConfigMap, Deployment, Service,
        skipping the optional ones the spec does not need.
    """
    manifests = [
        render_service_account(name, namespace, spec, owner),
        render_configmap(name, namespace, spec, owner),
        render_deployment(name, namespace, spec, refs, plan, owner),
        render_service(name, namespace, spec, plan, owner),
    ]
    return [manifest for manifest in manifests if manifest is not None]
