import asyncio
import sys

import pytest

from appforge.services.process_service import (
    LocalProcessSupervisor,
    ProcessSupervisorError,
    rewrite_env_port,
)
from appforge.services.project_store import ProjectNotFound

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX only")

SLEEPER = [sys.executable, "-c", "import time; print('ready', flush=True); time.sleep(60)"]
CHATTY = [sys.executable, "-c", "import time\nfor i in range(20): print(f'line {i}', flush=True)\ntime.sleep(60)"]
QUITTER = [sys.executable, "-c", "print('bye')"]
BRIEF = [sys.executable, "-c", "import time; time.sleep(0.5)"]
# records its arguments in the working directory, standing in for docker-compose
RECORDER = [sys.executable, "-c", "import sys, pathlib; pathlib.Path('compose.log').write_text(' '.join(sys.argv[1:]))"]


@pytest.fixture
def project_dir(file_system, project):
    structure = file_system.create_project_structure(project["id"], project["name"])
    base = file_system.get_project_path(project["id"])
    file_system.save_file(base, "backend/package.json", "{}")
    file_system.save_file(base, "frontend/package.json", "{}")
    file_system.save_file(base, "backend/.env", "PORT=5000\nNODE_ENV=development\n")
    return structure


def _supervisor(store, file_system, ports, **commands):
    return LocalProcessSupervisor(
        store,
        file_system,
        ports,
        stop_grace_seconds=2,
        log_limit=5,
        commands={"backend": SLEEPER, "frontend": SLEEPER, **commands},
    )


async def _wait_until(predicate, timeout=10.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_start_status_stop(store, file_system, ports, project, project_dir):
    supervisor = _supervisor(store, file_system, ports)
    pid = project["id"]

    info = await supervisor.start(pid, skip_install=True)

    assert info["status"] == "running"
    assert info["urls"] == {"frontend": "http://localhost:4000", "backend": "http://localhost:4001"}
    assert info["pids"]["backend"] and info["pids"]["frontend"]
    assert [a["project_id"] for a in supervisor.running()] == [pid]
    assert "PORT=4001" in file_system.read_file(pid, "backend/.env")

    saved = await store.get(pid)
    assert saved["status"] == "deployed"
    assert saved["urls"]["backend"] == "http://localhost:4001"

    await _wait_until(lambda: supervisor.logs(pid)["backend"])
    assert supervisor.logs(pid)["backend"][0]["message"] == "ready"

    stopped = await supervisor.stop(pid)
    assert stopped["was_running"] is True

    status = supervisor.status(pid)
    assert status["status"] == "stopped"
    assert status["urls"] is None
    assert status["pids"] is None
    assert supervisor.running() == []
    assert (await store.get(pid))["status"] == "stopped"


@pytest.mark.asyncio
async def test_second_start_reports_already_running(store, file_system, ports, project, project_dir):
    supervisor = _supervisor(store, file_system, ports)
    pid = project["id"]

    first = await supervisor.start(pid, skip_install=True)
    second = await supervisor.start(pid, skip_install=True)

    assert second["already_running"] is True
    assert second["pids"] == first["pids"]
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_exited_side_is_cleared(store, file_system, ports, project, project_dir):
    supervisor = _supervisor(store, file_system, ports, backend=QUITTER)
    pid = project["id"]

    await supervisor.start(pid, skip_install=True)
    await _wait_until(lambda: supervisor.registry.get(pid).backend is None)

    status = supervisor.status(pid)
    assert status["status"] == "running"
    assert status["urls"]["backend"] is None
    assert status["pids"]["frontend"]
    await supervisor.stop(pid)


@pytest.mark.asyncio
async def test_start_again_after_both_sides_exited(store, file_system, ports, project, project_dir):
    supervisor = _supervisor(store, file_system, ports, backend=BRIEF, frontend=BRIEF)
    pid = project["id"]

    await supervisor.start(pid, skip_install=True)
    await _wait_until(lambda: supervisor.status(pid)["status"] == "stopped")

    supervisor._commands = {"backend": SLEEPER, "frontend": SLEEPER}
    again = await supervisor.start(pid, skip_install=True)

    assert "already_running" not in again
    assert again["status"] == "running"
    assert again["pids"]["backend"] and again["pids"]["frontend"]
    await supervisor.stop(pid)


@pytest.mark.asyncio
async def test_log_buffer_is_bounded(store, file_system, ports, project, project_dir):
    supervisor = _supervisor(store, file_system, ports, backend=CHATTY)
    pid = project["id"]

    await supervisor.start(pid, skip_install=True)
    await _wait_until(lambda: any(e["message"] == "line 19" for e in supervisor.logs(pid)["backend"]))

    lines = [e["message"] for e in supervisor.logs(pid)["backend"]]
    assert lines == [f"line {i}" for i in range(15, 20)]
    await supervisor.stop(pid)


@pytest.mark.asyncio
async def test_nothing_spawnable_is_an_error(store, file_system, ports, project, project_dir):
    missing = ["/nonexistent/appforge-binary"]
    supervisor = _supervisor(store, file_system, ports, backend=missing, frontend=missing)

    with pytest.raises(ProcessSupervisorError):
        await supervisor.start(project["id"], skip_install=True)
    assert supervisor.registry.get(project["id"]) is None


@pytest.mark.asyncio
async def test_failed_install_is_best_effort(store, file_system, ports, project, project_dir):
    failing_install = [sys.executable, "-c", "import sys; sys.exit(3)"]
    supervisor = _supervisor(store, file_system, ports, install=failing_install)
    pid = project["id"]

    info = await supervisor.start(pid)

    assert info["install"]["backend"] == {"success": False, "exit_code": 3, "output": ""}
    assert info["status"] == "running"
    await supervisor.stop(pid)


@pytest.mark.asyncio
async def test_strict_install_aborts(store, file_system, ports, project, project_dir):
    failing_install = [sys.executable, "-c", "import sys; sys.exit(3)"]
    supervisor = _supervisor(store, file_system, ports, install=failing_install)

    with pytest.raises(ProcessSupervisorError):
        await supervisor.start(project["id"], strict_install=True)
    assert supervisor.running() == []


@pytest.mark.asyncio
async def test_start_unknown_or_missing_folder(store, file_system, ports, project):
    supervisor = _supervisor(store, file_system, ports)

    with pytest.raises(ProjectNotFound):
        await supervisor.start("missing")
    with pytest.raises(ProcessSupervisorError):
        await supervisor.start(project["id"])


@pytest.mark.asyncio
async def test_stop_when_not_running(store, file_system, ports):
    supervisor = _supervisor(store, file_system, ports)
    result = await supervisor.stop("nothing")
    assert result == {"project_id": "nothing", "status": "stopped", "was_running": False}


@pytest.mark.asyncio
async def test_docker_compose_up_and_down(store, file_system, ports, project, project_dir):
    pid = project["id"]
    base = file_system.get_project_path(pid)
    file_system.save_file(base, "docker-compose.yml", "services: {}\n")
    supervisor = _supervisor(store, file_system, ports, compose=RECORDER)

    info = await supervisor.start_docker(pid)

    assert info["mode"] == "docker"
    assert info["urls"] == {"frontend": "http://localhost:3000", "backend": "http://localhost:5000"}
    assert (base / "compose.log").read_text() == "up -d"
    assert (await store.get(pid))["status"] == "deployed"

    stopped = await supervisor.stop(pid, stop_docker=True)

    assert stopped["docker_stopped"] is True
    assert stopped["was_running"] is False
    assert (base / "compose.log").read_text() == "down"
    assert (await store.get(pid))["status"] == "stopped"


@pytest.mark.asyncio
async def test_docker_needs_compose_file(store, file_system, ports, project, project_dir):
    supervisor = _supervisor(store, file_system, ports, compose=RECORDER)

    with pytest.raises(ProcessSupervisorError, match="docker-compose.yml not found"):
        await supervisor.start_docker(project["id"])
    assert await supervisor.stop_docker(project["id"]) is False


@pytest.mark.asyncio
async def test_failed_docker_compose_is_an_error(store, file_system, ports, project, project_dir):
    base = file_system.get_project_path(project["id"])
    file_system.save_file(base, "docker-compose.yml", "services: {}\n")
    failing = [sys.executable, "-c", "import sys; print('no daemon'); sys.exit(1)"]
    supervisor = _supervisor(store, file_system, ports, compose=failing)

    with pytest.raises(ProcessSupervisorError, match="no daemon"):
        await supervisor.start_docker(project["id"])
    assert (await store.get(project["id"]))["status"] == "draft"


def test_rewrite_env_port(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("NODE_ENV=dev\nPORT=1\n")
    rewrite_env_port(env_file, 4321)
    assert env_file.read_text() == "NODE_ENV=dev\nPORT=4321\n"

    bare = tmp_path / "bare.env"
    bare.write_text("A=1\n")
    rewrite_env_port(bare, 9)
    assert bare.read_text() == "PORT=9\nA=1\n"
