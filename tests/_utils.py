"""Instrumented backends and graph helpers shared by the test-suite."""

import attrs

from cudevo.backends.host import HostBackend
from cudevo.errors import ResourceError


class RecordingBackend(HostBackend):
    """Host backend that remembers reads and releases."""

    def __init__(self, workers=2):
        super().__init__(workers=workers)
        self.reads = []
        self.releases = []

    def read_buffer(self, queue, buffer, offset=0, count=None):
        self.reads.append((buffer.label, offset, count))
        return super().read_buffer(queue, buffer, offset=offset, count=count)

    def release_buffer(self, buffer):
        self.releases.append(buffer.label)
        super().release_buffer(buffer)

    def release_kernel(self, kernel):
        self.releases.append(f"kernel {kernel.name}")
        super().release_kernel(kernel)

    def release_program(self, program):
        self.releases.append("program")
        super().release_program(program)

    def release_queue(self, queue):
        self.releases.append("queue")
        super().release_queue(queue)

    def release_device(self, device):
        self.releases.append("device")
        super().release_device(device)

    def release_context(self, context):
        self.releases.append("context")
        super().release_context(context)


class SnapshotBackend(RecordingBackend):
    """Recording backend that copies the buffers of every eval and select.

    ``evals`` holds ``(population, costs)`` after each eval and ``selects``
    holds a dict of the candidate, trial and output buffers of each select,
    both in execution order. The dependency chain serialises evals and
    selects, so execution order is enqueue order.
    """

    def __init__(self, workers=2):
        super().__init__(workers=workers)
        self.evals = []
        self.selects = []

    def _wrap_eval(self, function):
        def eval_and_copy(pop, costs, *rest):
            function(pop, costs, *rest)
            self.evals.append((pop.copy(), costs.copy()))
        return eval_and_copy

    def _wrap_select(self, function):
        def select_and_copy(cand_pop, cand_costs, trial_pop, trial_costs,
                            out_pop, out_costs, *rest):
            function(cand_pop, cand_costs, trial_pop, trial_costs, out_pop,
                     out_costs, *rest)
            self.selects.append({
                "cand_pop": cand_pop.copy(),
                "cand_costs": cand_costs.copy(),
                "trial_pop": trial_pop.copy(),
                "trial_costs": trial_costs.copy(),
                "out_pop": out_pop.copy(),
                "out_costs": out_costs.copy(),
            })
        return select_and_copy

    def enqueue_kernel(self, queue, kernel, args, global_size,
                       local_size=None, wait_for=()):
        wrappers = {"eval": self._wrap_eval, "select": self._wrap_select}
        if kernel.function is not None and kernel.name in wrappers:
            wrapped = wrappers[kernel.name](kernel.function)
            kernel = attrs.evolve(kernel, function=wrapped)
        return super().enqueue_kernel(queue, kernel, args, global_size,
                                      local_size=local_size,
                                      wait_for=wait_for)


class FailingReleaseBackend(RecordingBackend):
    """Recording backend whose release of the named handles raises."""

    def __init__(self, failing=("queue",), workers=2):
        super().__init__(workers=workers)
        self.failing = set(failing)

    def release_queue(self, queue):
        super().release_queue(queue)
        if "queue" in self.failing:
            raise RuntimeError("queue release failed")

    def release_context(self, context):
        super().release_context(context)
        if "context" in self.failing:
            raise RuntimeError("context release failed")


class FailingAllocationBackend(RecordingBackend):
    """Recording backend that cannot allocate the buffer named ``label``."""

    def __init__(self, label, workers=2):
        super().__init__(workers=workers)
        self.label = label

    def create_buffer(self, context, label, shape, dtype, host_data=None,
                      read_only=False):
        if label == self.label:
            raise ResourceError(f"out of memory allocating {label}")
        return super().create_buffer(context, label, shape, dtype,
                                     host_data=host_data,
                                     read_only=read_only)


def dependency_closure(launches):
    """Map each launch's event id to the ids of everything it waits on."""
    closure = {}
    for record in launches:
        ancestors = set()
        for event in record.wait_for:
            ancestors.add(event.id)
            ancestors |= closure[event.id]
        closure[record.event.id] = ancestors
    return closure


def conflicts(earlier, later):
    """Whether two launches touch a buffer with at least one write."""
    later_touches = set(later.reads) | set(later.writes)
    return bool(set(earlier.writes) & later_touches
                or set(earlier.reads) & set(later.writes))


def write_source(directory, name, text):
    """Write a cost-function source file and return its path."""
    path = directory / name
    path.write_text(text, encoding="utf-8")
    return path
