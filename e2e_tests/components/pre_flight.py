import boto3
import httpx
from botocore.exceptions import ClientError, NoCredentialsError, NoRegionError
from rich.console import Console
from rich.panel import Panel

from .config import Config


def verify_connectivity(config: Config):
    """
    Performs pre-flight checks before the smoke runner is instantiated.
    - Verifies AWS credentials and access to the asset bucket.
    - Verifies the Function URL answers at all.
    - Exits with a clear error message on failure.
    """
    console = Console()
    console.print("\n--- [bold blue]Pre-flight Checks[/bold blue] ---")

    try:
        session = boto3.Session(region_name=config.aws_region)
        s3_client = session.client("s3")
        console.log("[green]✓[/green] Boto3 S3 session initialized successfully.")

        s3_client.head_bucket(Bucket=config.bucket)
        console.log(f"[green]✓[/green] Access confirmed for S3 bucket: '{config.bucket}'")

        response = httpx.get(config.function_url + "/", timeout=config.timeout_seconds)
        console.log(
            f"[green]✓[/green] Function URL responded with HTTP {response.status_code}: "
            f"'{config.function_url}'"
        )

        console.print("[bold green]✅ Pre-flight checks passed.[/bold green]")

    except NoCredentialsError:
        console.print("\n[bold red]❌ PRE-FLIGHT CHECK FAILED[/bold red]\n")
        error_message = (
            "AWS credentials not found. Please configure them using one of the following methods:\n"
            "  1. Environment variables (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY)\n"
            "  2. A shared credentials file (~/.aws/credentials) with a profile.\n"
            "  3. An IAM role attached to the instance or task."
        )
        console.print(Panel(error_message, title="Authentication Error", border_style="red"))
        exit(2)

    except NoRegionError:
        console.print("\n[bold red]❌ PRE-FLIGHT CHECK FAILED[/bold red]\n")
        error_message = (
            "An AWS region was not specified. Please configure it using one of the following methods:\n"
            "  1. The --aws-region command-line flag.\n"
            "  2. The 'aws_region' key in your JSON config file.\n"
            "  3. The AWS_REGION or AWS_DEFAULT_REGION environment variables."
        )
        console.print(Panel(error_message, title="Configuration Error", border_style="red"))
        exit(2)

    except ClientError as e:
        console.print("\n[bold red]❌ PRE-FLIGHT CHECK FAILED[/bold red]\n")
        error_code = e.response["Error"]["Code"]
        if error_code == "404":
            error_message = f"The S3 bucket '{config.bucket}' does not exist."
        elif error_code == "403":
            error_message = "Access Denied when accessing the bucket. Please check your IAM permissions."
        else:
            error_message = f"An unexpected AWS API error occurred: {e}"
        console.print(Panel(error_message, title="AWS API Error", border_style="red"))
        exit(2)

    except httpx.HTTPError as e:
        console.print("\n[bold red]❌ PRE-FLIGHT CHECK FAILED[/bold red]\n")
        console.print(
            Panel(
                f"Could not reach the Function URL '{config.function_url}': {e}",
                title="Network Error",
                border_style="red",
            )
        )
        exit(2)
