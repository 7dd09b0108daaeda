import argparse
import logging

import pytest

from common.workers.base_worker import BaseWorker
from common.workers.launcher import WorkerLauncher


class OneTickWorker(BaseWorker):
    def __init__(self, fail_setup: bool = False):
        super().__init__(name="one_tick", interval_seconds=0.01, run_once=True)
        self.fail_setup = fail_setup
        self.ticks = 0

    async def setup(self):
        if self.fail_setup:
            raise RuntimeError("redis unavailable")

    async def tick(self):
        self.ticks += 1


class TestWorkerLauncher:
    def test_clean_run_exits_zero(self):
        launcher = WorkerLauncher()

        code = launcher.run(OneTickWorker, "One Tick")

        assert code == 0
        assert launcher.worker.ticks == 1

    def test_crash_exits_non_zero(self):
        launcher = WorkerLauncher()

        code = launcher.run(
            OneTickWorker, "One Tick", factory_kwargs={"fail_setup": True}
        )

        assert code == 1
        assert launcher.worker.ticks == 0

    def test_run_with_cli_passes_factory_kwargs(self, monkeypatch):
        launcher = WorkerLauncher()
        captured = {}

        def fake_run(factory, name, log_level, factory_args, factory_kwargs):
            captured.update(
                name=name, log_level=log_level, factory_kwargs=factory_kwargs
            )
            return 0

        monkeypatch.setattr(launcher, "run", fake_run)

        def cli():
            return argparse.Namespace(log_level="DEBUG"), (), {"run_once": True}

        with pytest.raises(SystemExit) as exc_info:
            launcher.run_with_cli(OneTickWorker, "One Tick", cli_setup_func=cli)

        assert exc_info.value.code == 0
        assert captured == {
            "name": "One Tick",
            "log_level": logging.DEBUG,
            "factory_kwargs": {"run_once": True},
        }
