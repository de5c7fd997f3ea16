"""
Gunicorn config. Registers the card fonts in each worker process
(post_fork) so the first image request does not pay for font parsing.

when_ready renders a card against localhost once the server accepts
connections, so a deploy missing its assets is flagged in the boot log.
"""

import logging
import os
import threading

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = 30

SMOKE_DELAY_SECONDS = 2


def when_ready(server):
    """Render one card against localhost after boot; SMOKE_ON_BOOT=0 disables it."""
    if os.environ.get("SMOKE_ON_BOOT", "1") == "0":
        return
    base_url = f"http://127.0.0.1:{os.environ.get('PORT', '8000')}"
    log = logging.getLogger("gunicorn.error")

    def _check_cards():
        import time
        time.sleep(SMOKE_DELAY_SECONDS)  # workers are still forking
        try:
            from smoke_test import run_tests
            log.info("OG card boot check against %s", base_url)
            if run_tests(base_url):
                log.info("OG card boot check passed")
            else:
                log.error("OG card boot check failed; /og/ links will show broken previews")
        except Exception:
            log.exception("OG card boot check crashed")

    threading.Thread(target=_check_cards, name="og-boot-check", daemon=True).start()


def post_fork(server, worker):
    """Register the card fonts in this gunicorn worker process."""
    try:
        from og_image import ImageComposer
        ImageComposer().register_fonts()
    except Exception as e:
        logging.getLogger(__name__).exception("Failed to preload OG fonts: %s", e)
