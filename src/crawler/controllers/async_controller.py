import logging

logger = logging.getLogger(__name__)


class AsyncController:
    """
    Base class for asynchronous controllers.

    Provides the lifecycle hooks (setup, shutdown) around a run; subclasses
    open their network resources in setup and release them in shutdown.
    Usable as an async context manager.
    """

    def __init__(self):
        self._setup_done = False

    async def setup(self):
        """
        Prepares resources for the controller. Runs only once until shutdown.
        """
        if self._setup_done:
            return
        self._setup_done = True
        logger.debug("%s setup done.", type(self).__name__)

    async def shutdown(self):
        """Releases resources. Safe to call more than once."""
        self._setup_done = False
        logger.debug("%s shut down.", type(self).__name__)

    async def __aenter__(self):
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
