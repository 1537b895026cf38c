from textwrap import dedent

import numpy as np
import pytest

from cudevo.backends.host import HostBackend
from cudevo.cuda_simsafe import cuda_available, is_cudasim_enabled
from cudevo.engine.faults import FaultController
from cudevo.engine.resources import ResourcePool
from cudevo.engine.session import BackendSession
from cudevo.params import ProblemParameters
from tests._utils import RecordingBackend, write_source

np.set_printoptions(linewidth=120, precision=12)

# --------------------------------------------------------------------------- #
#                           Collection hook                                   #
# --------------------------------------------------------------------------- #
def pytest_collection_modifyitems(config, items):
    # nocudasim tests launch real kernels on a real device
    if cuda_available() and not is_cudasim_enabled():
        return
    skip = pytest.mark.skip(reason="needs a CUDA device without the "
                                   "simulator")
    for item in items:
        if "nocudasim" in item.keywords:
            item.add_marker(skip)


# --------------------------------------------------------------------------- #
#                           Cost function sources                             #
# --------------------------------------------------------------------------- #
SPHERE_SOURCE = dedent(
    """
    def eval(pop, costs, pop_size, attr_count, const_data, local):
        values = pop.reshape(pop_size, attr_count)
        costs[:] = np.sum(values * values, axis=1)
    """
)

SHIFTED_SPHERE_SOURCE = dedent(
    """
    def eval(pop, costs, pop_size, attr_count, const_data, local):
        values = pop.reshape(pop_size, attr_count)
        costs[:] = np.sum((values - const_data) ** 2, axis=1)
    """
)

SCRATCH_CHECK_SOURCE = dedent(
    """
    def eval(pop, costs, pop_size, attr_count, const_data, local):
        if local is None or local.nbytes != 64:
            raise RuntimeError("expected 64 bytes of scratch")
        values = pop.reshape(pop_size, attr_count)
        costs[:] = np.sum(values * values, axis=1)
    """
)

RAISING_SOURCE = dedent(
    """
    def eval(pop, costs, pop_size, attr_count, const_data, local):
        raise RuntimeError("cost function exploded")
    """
)

BROKEN_SOURCE = "def eval(pop, costs:\n    return\n"

NO_EVAL_SOURCE = "def cost(pop):\n    return 0.0\n"


@pytest.fixture()
def sphere_source(tmp_path):
    return write_source(tmp_path, "sphere.py", SPHERE_SOURCE)


@pytest.fixture()
def shifted_sphere_source(tmp_path):
    return write_source(tmp_path, "shifted.py", SHIFTED_SPHERE_SOURCE)


@pytest.fixture()
def scratch_source(tmp_path):
    return write_source(tmp_path, "scratch.py", SCRATCH_CHECK_SOURCE)


@pytest.fixture()
def raising_source(tmp_path):
    return write_source(tmp_path, "raising.py", RAISING_SOURCE)


@pytest.fixture()
def broken_source(tmp_path):
    return write_source(tmp_path, "broken.py", BROKEN_SOURCE)


@pytest.fixture()
def no_eval_source(tmp_path):
    return write_source(tmp_path, "no_eval.py", NO_EVAL_SOURCE)


@pytest.fixture()
def missing_source(tmp_path):
    return tmp_path / "does_not_exist.py"


@pytest.fixture()
def host_backend():
    return HostBackend(workers=2)


@pytest.fixture()
def recording_backend():
    return RecordingBackend()


# --------------------------------------------------------------------------- #
#                          Parameters and engine                              #
# --------------------------------------------------------------------------- #
@pytest.fixture(scope="function")
def params_override(request):
    return request.param if hasattr(request, "param") else {}


@pytest.fixture(scope="function")
def params(params_override):
    settings = {
        "iterations": 4,
        "population_size": 8,
        "attribute_count": 3,
        "seed": 1234,
    }
    settings.update(params_override)
    return ProblemParameters.from_kwargs(**settings)


@pytest.fixture()
def session(recording_backend, sphere_source):
    """Initialised session with the sphere program built."""
    session = BackendSession(recording_backend, FaultController())
    session.init()
    session.compile(sphere_source)
    yield session
    session.teardown()


@pytest.fixture()
def pool(session, params):
    """Resource pool allocated for ``params``."""
    pool = ResourcePool(session)
    pool.allocate(params)
    yield pool
    pool.release()
