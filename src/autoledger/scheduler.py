"""
autoledger - Plan scheduler

A single background thread that wakes every `interval` seconds and runs one
tick:

1. execute every plan due at the current time (each in its own transaction;
   one plan's failure never touches another)
2. once per calendar day, at or after the balance check time, warn about
   plans due tomorrow whose source account cannot cover them

`tick(now)` is public so tests and the CLI can drive the scheduler without
the thread or the wall clock.
"""

import threading

from autoledger.log import get_logger

logger = get_logger(__name__)


class Scheduler:

    def __init__(self, engine, interval=60, clock=None, balance_check_time="08:00"):
        self.engine = engine
        self.interval = float(interval)
        self.clock = clock or engine.clock
        self.balance_check_time = balance_check_time
        self.last_tick_at = None
        self.last_balance_check = None
        self._stop_event = threading.Event()
        self._thread = None

    # =============================================================================
    # LIFECYCLE
    # =============================================================================

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the background thread; the first tick runs immediately."""
        if self.is_running:
            logger.warning("scheduler_already_running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="autoledger-scheduler", daemon=True)
        self._thread.start()
        logger.info("scheduler_started", interval=self.interval)

    def stop(self, timeout=5):
        if not self.is_running:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("scheduler_stopped")

    def status(self):
        return {
            'running': self.is_running,
            'interval': self.interval,
            'last_tick_at': self.last_tick_at,
            'last_balance_check': self.last_balance_check,
        }

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.error("scheduler_tick_failed", exc_info=True)
            self._stop_event.wait(self.interval)

    # =============================================================================
    # ONE TICK
    # =============================================================================

    def tick(self, now=None):
        """
        Run one scheduler pass synchronously.

        Returns:
            dict: executed (list of ExecutionResult), reminders (ids created
            by the balance sweep, empty when it did not run)
        """
        now = now or self.clock()
        self.last_tick_at = now

        executed = self.engine.execution.run_due_plans(now)

        today = now.date()
        reminders = []
        if self.last_balance_check != today and now.strftime('%H:%M') >= self.balance_check_time:
            try:
                reminders = self.engine.reminders.check_insufficient_balance(today=today)
            except Exception:
                logger.error("balance_check_failed", exc_info=True)
            else:
                self.last_balance_check = today

        if executed:
            logger.info("scheduler_tick", executed=len(executed),
                        failed=sum(1 for r in executed if not r.success))
        return {'executed': executed, 'reminders': reminders}
