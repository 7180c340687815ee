import logging
import signal
import sys

from auditfeed.config import Settings
from auditfeed.normalize import dumps_plain
from auditfeed.parser import JsonLinesParser
from auditfeed.watcher import DirectoryWatcher


def _print_item(item):
    sys.stdout.write(dumps_plain(item) + "\n")
    sys.stdout.flush()


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    watcher = DirectoryWatcher(JsonLinesParser(), settings)

    def _shutdown(signum, frame):
        logging.getLogger(__name__).info("signal %d received, stopping", signum)
        if settings.strategy == "block":
            watcher.interrupt()
        else:
            watcher.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    watcher.run_in_background(_print_item)
    while not watcher.await_stop(timeout=0.5):
        pass
    return 0
