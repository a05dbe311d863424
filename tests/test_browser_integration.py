"""
Integration tests that drive a real Chromium against a local test site.

Skipped when the Chromium runtime is not installed.
"""

import asyncio
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import pytest_asyncio

from stepwise.browser.runtime import BrowserRuntimeManager
from stepwise.core.types import BrowserName, RunStatus, StepStatus
from stepwise.orchestration import RunOrchestrator

INDEX_PAGE = b"""<!doctype html>
<html>
<body>
  <label for="email">Email</label>
  <input id="email" type="text">
  <button onclick="document.getElementById('out').textContent = 'Welcome back'">Sign in</button>
  <div id="out"></div>

  <select aria-label="Country">
    <option>Canada</option>
    <option>Mexico</option>
  </select>
  <label><input type="checkbox"> I agree</label>

  <button onclick="fetch('/api/profile')">Load profile</button>
  <button onclick="window.location.href = '/report.csv'">Export CSV</button>
  <button onclick="if (confirm('Delete this order?')) document.getElementById('out').textContent = 'Order deleted'">Delete</button>
  <a href="/about">About</a>
</body>
</html>
"""

ABOUT_PAGE = b"<!doctype html><html><body><h1>About us</h1></body></html>"


class SiteHandler(BaseHTTPRequestHandler):
    routes = {
        "/": ("text/html", INDEX_PAGE, {}),
        "/about": ("text/html", ABOUT_PAGE, {}),
        "/api/profile": ("application/json", b'{"name": "QA"}', {}),
        "/report.csv": (
            "text/csv",
            b"id,total\n1,10\n",
            {"Content-Disposition": 'attachment; filename="report.csv"'},
        ),
    }

    def do_GET(self):
        route = self.routes.get(self.path)
        if route is None:
            self.send_error(404)
            return
        content_type, body, headers = route
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        for name, value in headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def site():
    server = ThreadingHTTPServer(("127.0.0.1", 0), SiteHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


@pytest_asyncio.fixture
async def runtime(settings):
    manager = BrowserRuntimeManager(settings=settings, headless=True)
    status = await manager.get_status(BrowserName.CHROMIUM)
    if not status.installed:
        await manager.stop()
        pytest.skip("Chromium runtime is not installed")
    yield manager
    await manager.stop()


@pytest.mark.integration
class TestBrowserIntegration:
    """Integration tests for full runs in Chromium."""

    @pytest.mark.asyncio
    async def test_full_run(self, store, settings, site, runtime):
        """Test every kind of step against a real page."""
        project = store.create_project("Local site", site)
        test_case = store.create_test_case(
            project.id,
            "Everything",
            [
                'Enter "qa@example.com" in "Email" field',
                'Click "Sign in"',
                "Expect Welcome back",
                'Select "Mexico" from "Country" dropdown',
                'Check "I agree" checkbox',
                'Wait for request "GET **/api/profile" and expect status "200" '
                'after clicking "Load profile"',
                'Wait for download after clicking "Export CSV"',
                "Go to /about",
                "Expect About us within 5s",
            ],
        )
        orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)

        run = orchestrator.start(test_case.id, BrowserName.CHROMIUM)
        final = await orchestrator.wait_for_run(run.id)

        results = orchestrator.step_results(run.id)
        assert [r.error_text for r in results] == [None] * len(results)
        assert final.status == RunStatus.PASSED
        for result in results:
            assert orchestrator.thumbnail_data_url(result.screenshot_path).startswith("data:image/")

    @pytest.mark.asyncio
    async def test_failed_expectation(self, store, settings, site, runtime):
        project = store.create_project("Local site", site)
        test_case = store.create_test_case(
            project.id, "Missing", ["Expect Goodbye forever within 1s", 'Click "Sign in"']
        )
        orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)

        run = orchestrator.start(test_case.id)
        final = await orchestrator.wait_for_run(run.id)

        results = orchestrator.step_results(run.id)
        assert final.status == RunStatus.FAILED
        assert results[0].status == StepStatus.FAILED
        assert results[0].error_text.startswith("Step timed out")
        assert results[1].status == StepStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_dialog_opened_by_click(self, store, settings, site, runtime):
        """Test a confirm() raised by a click is answered by the next step."""
        project = store.create_project("Local site", site)
        test_case = store.create_test_case(
            project.id,
            "Delete",
            ['Click "Delete"', "Accept browser dialog", "Expect Order deleted"],
        )
        orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)

        run = orchestrator.start(test_case.id)
        final = await orchestrator.wait_for_run(run.id)

        results = orchestrator.step_results(run.id)
        assert [r.error_text for r in results] == [None, None, None]
        assert final.status == RunStatus.PASSED

    @pytest.mark.asyncio
    async def test_cancel_running_step(self, store, settings, site, runtime):
        """Test a cancelled run stops promptly and keeps its cancelled status."""
        project = store.create_project("Local site", site)
        test_case = store.create_test_case(
            project.id, "Slow", ['Click "Sign in" after 30 seconds']
        )
        orchestrator = RunOrchestrator(store=store, runtime=runtime, settings=settings)
        started = asyncio.Event()
        orchestrator.subscribe(
            lambda event: started.set() if event.step_id is not None else None
        )

        run = orchestrator.start(test_case.id)
        await asyncio.wait_for(started.wait(), timeout=30)
        assert orchestrator.cancel(run.id) is True
        final = await asyncio.wait_for(orchestrator.wait_for_run(run.id), timeout=10)

        assert final.status == RunStatus.CANCELLED
        assert orchestrator.step_results(run.id)[0].error_text == "Step did not run."
