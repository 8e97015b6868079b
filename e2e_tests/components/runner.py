# e2e_tests/components/runner.py
import hashlib
import uuid
from typing import Callable, List, TypedDict

import boto3
import httpx
from rich.console import Console
from rich.table import Table

from .config import Config


# --- Data Structures ---


class CheckResult(TypedDict):
    name: str
    status: str  # 'PASS' or 'FAIL'
    details: str


# --- Constants ---
ASSET_CACHE_CONTROL = "max-age=31536000"
STORAGE_HEADERS = ("x-amz-request-id", "x-amz-id-2", "x-amz-version-id", "server")


class CheckFailed(Exception):
    """Raised by a check with the reason it failed."""


class SmokeTestRunner:
    """Seeds a built asset in the bucket and exercises a deployed dispatcher."""

    def __init__(self, config: Config):
        self.config = config
        self.s3 = boto3.client("s3", region_name=config.aws_region)
        self.http = httpx.Client(timeout=config.timeout_seconds, follow_redirects=False)
        self.console = Console()

        self.run_id = f"e2e-smoke-{uuid.uuid4().hex[:8]}"
        self.asset_key = f"{config.asset_prefix}/{self.run_id}.js"
        self.asset_body = f"console.log('{self.run_id}');\n".encode("utf-8")
        self.asset_sha256 = hashlib.sha256(self.asset_body).hexdigest()

    def _url(self, path: str) -> str:
        return f"{self.config.function_url}{path}"

    # --- Setup & teardown ---

    def _seed_asset(self):
        self.console.print("\n--- [bold green]Seeding Phase[/bold green] ---")
        self.s3.put_object(
            Bucket=self.config.bucket,
            Key=self.asset_key,
            Body=self.asset_body,
            ContentType="application/javascript",
        )
        self.console.log(f"Uploaded test asset to S3 key: [cyan]{self.asset_key}[/cyan]")

    def _cleanup(self):
        if self.config.keep_files:
            self.console.log(f"Keeping test asset [cyan]{self.asset_key}[/cyan] as requested.")
            return
        self.s3.delete_object(Bucket=self.config.bucket, Key=self.asset_key)
        self.console.log(f"Deleted test asset [cyan]{self.asset_key}[/cyan].")

    # --- Checks ---

    def _check_asset_served(self):
        response = self.http.get(self._url(f"/{self.asset_key}"))
        if response.status_code != 200:
            raise CheckFailed(f"expected 200, got {response.status_code}")
        digest = hashlib.sha256(response.content).hexdigest()
        if digest != self.asset_sha256:
            raise CheckFailed(f"body hash mismatch: {digest[:12]} != {self.asset_sha256[:12]}")
        leaked = [name for name in STORAGE_HEADERS if name in response.headers]
        if leaked:
            raise CheckFailed(f"storage headers leaked: {', '.join(leaked)}")
        if response.headers.get("surrogate-control") != ASSET_CACHE_CONTROL:
            raise CheckFailed(
                f"surrogate-control was {response.headers.get('surrogate-control')!r}"
            )
        return "body, cache directive and header hygiene OK"

    def _check_query_string_ignored(self):
        response = self.http.get(self._url(f"/{self.asset_key}"), params={"v": "cache-bust"})
        if response.status_code != 200:
            raise CheckFailed(f"expected 200 with a query string, got {response.status_code}")
        return "query string stripped before signing"

    def _check_head(self):
        response = self.http.head(self._url(f"/{self.asset_key}"))
        if response.status_code != 200:
            raise CheckFailed(f"expected 200, got {response.status_code}")
        if response.content:
            raise CheckFailed(f"HEAD returned {len(response.content)} body bytes")
        return "HEAD proxied without a body"

    def _check_missing_asset_falls_through(self):
        response = self.http.get(self._url(f"/{self.config.asset_prefix}/{self.run_id}-missing.js"))
        if response.status_code != 404:
            raise CheckFailed(f"expected the application's 404, got {response.status_code}")
        if "x-amz-request-id" in response.headers:
            raise CheckFailed("404 came from the bucket, not the application")
        return "bucket miss handed to the application"

    def _check_app_page(self):
        response = self.http.get(self._url("/"))
        if response.status_code != 200:
            raise CheckFailed(f"expected 200, got {response.status_code}")
        if response.headers.get("x-compress-hint") != "on":
            raise CheckFailed("x-compress-hint header missing")
        return f"page rendered ({len(response.content)} bytes)"

    def _check_form_post(self):
        response = self.http.post(self._url("/"), data={"name": self.run_id})
        if response.status_code != 200:
            raise CheckFailed(f"expected 200, got {response.status_code}")
        if self.run_id not in response.text:
            raise CheckFailed("form value not echoed in the page")
        return "urlencoded form decoded"

    def _run_check(self, name: str, check: Callable[[], str]) -> CheckResult:
        try:
            details = check()
        except CheckFailed as e:
            return {"name": name, "status": "FAIL", "details": str(e)}
        except httpx.HTTPError as e:
            return {"name": name, "status": "FAIL", "details": f"{type(e).__name__}: {e}"}
        return {"name": name, "status": "PASS", "details": details}

    def _display_and_report(self, results: List[CheckResult]):
        self.console.print("\n--- [bold green]Results[/bold green] ---")
        table = Table(title=f"{self.config.description} ({self.run_id})")
        table.add_column("Check", style="cyan", no_wrap=True)
        table.add_column("Status", justify="center")
        table.add_column("Details", style="yellow")

        for result in results:
            status = (
                "[bold green]PASS[/bold green]"
                if result["status"] == "PASS"
                else "[bold red]FAIL[/bold red]"
            )
            table.add_row(result["name"], status, result["details"])

        self.console.print(table)

    def run(self) -> int:
        """Runs every check and returns a process exit code."""
        checks = [
            ("asset served from bucket", self._check_asset_served),
            ("query string ignored", self._check_query_string_ignored),
            ("HEAD request", self._check_head),
            ("missing asset falls through", self._check_missing_asset_falls_through),
            ("application page", self._check_app_page),
            ("form post", self._check_form_post),
        ]

        self._seed_asset()
        try:
            self.console.print("\n--- [bold blue]Checks[/bold blue] ---")
            results = [self._run_check(name, check) for name, check in checks]
        finally:
            self._cleanup()
            self.http.close()

        self._display_and_report(results)

        if all(r["status"] == "PASS" for r in results):
            self.console.print("\n[bold green]✅ SMOKE TEST PASSED[/bold green]")
            return 0
        failed = sum(1 for r in results if r["status"] == "FAIL")
        self.console.print(f"\n[bold red]❌ SMOKE TEST FAILED: {failed} check(s) failed.[/bold red]")
        return 1
