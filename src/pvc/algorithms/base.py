"""Fixed-iteration driver shared by the iterative correction methods."""

import logging

from pvc.exceptions import InvalidParameter

LOGGER = logging.getLogger(__name__)


class IterativeAlgorithm:
    """
    Runs ``update`` a fixed number of times.

    Subclasses implement ``update`` (one iteration) and may implement
    ``update_objective``, which is called every ``update_objective_interval``
    iterations and is expected to append to ``loss``. Callbacks receive the
    algorithm after every iteration, when ``iteration`` already counts it.
    """

    def __init__(self, update_objective_interval=1):
        if update_objective_interval < 0:
            raise InvalidParameter(
                f"update_objective_interval must be >= 0, got {update_objective_interval}."
            )
        self.iteration = 0
        self.loss = []
        self.update_objective_interval = update_objective_interval

    def update(self):  # pragma: no cover - implemented by subclasses
        raise NotImplementedError

    def update_objective(self):
        pass

    def run(self, iterations, callbacks=None, verbose=0):
        if isinstance(iterations, bool) or int(iterations) != iterations or iterations <= 0:
            raise InvalidParameter(f"Number of iterations must be a positive integer, got {iterations}.")
        callbacks = list(callbacks or [])
        for _ in range(int(iterations)):
            self.update()
            self.iteration += 1
            if self.update_objective_interval and self.iteration % self.update_objective_interval == 0:
                self.update_objective()
            if verbose and self.loss:
                LOGGER.info("%s: iteration %d, objective %.6g",
                            type(self).__name__, self.iteration, self.loss[-1])
            for callback in callbacks:
                callback(self)
        return self
