import contextlib
import os
import shutil
import subprocess
import sys
import tempfile
import time
import uuid
from pathlib import Path

import pytest
from kubernetes import client, config, utils


@pytest.fixture(scope="session")
def k3d_cluster():
    """Starts a k3d cluster for integration tests."""
    if not shutil.which("k3d"):
        pytest.skip("k3d not installed")

    name = f"mcp-test-{uuid.uuid4().hex[:8]}"
    kube_config_path = None

    try:
        # Create cluster
        subprocess.run(
            ["k3d", "cluster", "create", name, "--no-lb", "--wait", "--timeout", "60s"],
            check=True,
            capture_output=True,
        )

        # Get kubeconfig
        result = subprocess.run(
            ["k3d", "kubeconfig", "get", name], check=True, capture_output=True, text=True
        )
        kubeconfig_yaml = result.stdout

        # Write to temp file
        with tempfile.NamedTemporaryFile(delete=False, mode="w", suffix=".yaml") as f:
            f.write(kubeconfig_yaml)
            kube_config_path = f.name

        # Set KUBECONFIG environment variable for subprocesses (operator)
        os.environ["KUBECONFIG"] = kube_config_path

        # Load config for the python client in this process
        config.load_kube_config(config_file=kube_config_path)

        yield name

    except subprocess.CalledProcessError as e:
        pytest.skip(f"Could not start k3d cluster: {e}")
    finally:
        # Teardown
        if shutil.which("k3d"):
            subprocess.run(["k3d", "cluster", "delete", name], check=False, capture_output=True)

        if kube_config_path and os.path.exists(kube_config_path):
            os.remove(kube_config_path)


@pytest.fixture(scope="session")
def k8s_client(k3d_cluster):
    """Returns a configured Kubernetes client."""
    return client.ApiClient()


@pytest.fixture(scope="session")
def setup_cluster(k3d_cluster, k8s_client):
    """Installs the MCPServer CRD and the test namespace."""
    k8s_api = client.CoreV1Api(k8s_client)

    # Create mcp-test namespace (for tests)
    try:
        k8s_api.create_namespace(
            body=client.V1Namespace(metadata=client.V1ObjectMeta(name="mcp-test"))
        )
    except client.exceptions.ApiException as e:
        if e.status != 409:  # Conflict/AlreadyExists
            raise

    # Root of the repo
    root_dir = Path(__file__).parents[2]

    # Install CRDs
    crds_dir = root_dir / "manifests/base/crds"
    for crd_file in crds_dir.glob("*-crd.yaml"):
        with contextlib.suppress(utils.FailToCreateError):
            utils.create_from_yaml(k8s_client, str(crd_file))

    # Wait a bit for CRDs to be ready
    time.sleep(2)

    return k8s_client


@pytest.fixture(scope="session")
def operator(setup_cluster):
    """Runs the MCP operator in a subprocess."""
    # We run kopf in standalone mode from the repo root so `src` is importable
    root_dir = Path(__file__).parents[2]
    main_py = root_dir / "src/main.py"

    cmd = [
        sys.executable,
        "-m",
        "kopf",
        "run",
        str(main_py),
        "--standalone",
        "--all-namespaces",  # Monitor all namespaces
        # "--verbose"
    ]

    # Operator logs go to a file so a full pipe never blocks it
    log_file = tempfile.TemporaryFile(mode="w+")
    process = subprocess.Popen(
        cmd,
        stdout=log_file,
        stderr=subprocess.STDOUT,
        env={**os.environ, "KMCP_RESYNC_INTERVAL": "5", "KMCP_REQUEUE_DELAY": "2"},
        cwd=root_dir,
        text=True,
    )

    # Give it a moment to start
    time.sleep(5)

    if process.poll() is not None:
        log_file.seek(0)
        raise RuntimeError(f"Operator failed to start:\n{log_file.read()}")

    yield process

    # Teardown
    process.terminate()
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        process.kill()
    log_file.close()
