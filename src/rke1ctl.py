#!/usr/bin/env python3
"""
CLI tool for the RKE1 operator
Provides a kubectl-like interface for clusters, node templates and secrets
"""

import json
import sys

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = "http://localhost:8000"


class RKE1OperatorCLI:
    """CLI client for the RKE1 operator API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/") + "/api/v1"

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None


def load_documents(filename):
    """Read one or more object documents from a YAML or JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".json"):
            data = json.load(f)
            return data if isinstance(data, list) else [data]
        return [doc for doc in yaml.safe_load_all(f) if doc]


def ready_reason(body):
    for condition in body.get("status", {}).get("conditions", []):
        if condition.get("type") == "Ready":
            return condition.get("reason", "")
    return ""


@click.group()
@click.option(
    "--api-url",
    envvar="RKE1_API_URL",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the operator API",
)
@click.pass_context
def cli(ctx, api_url):
    """RKE1 operator CLI - kubectl-like interface for RKE1 resources"""
    ctx.obj = RKE1OperatorCLI(api_url)


@cli.command()
@click.option(
    "--filename",
    "-f",
    required=True,
    type=click.Path(exists=True),
    help="YAML/JSON file",
)
@click.pass_obj
def apply(client, filename):
    """Apply objects from a YAML/JSON file"""
    failed = False
    for document in load_documents(filename):
        result = client._make_request("POST", "/objects", json=document)
        if result is None:
            failed = True
            continue
        obj = result["object"]
        action = "created" if result["created"] else "configured"
        click.echo(f"{obj['kind']}/{obj['name']} {action}")

    if failed:
        sys.exit(1)


@cli.command()
@click.argument("kind")
@click.option("--namespace", "-n", default=None, help="Only list this namespace")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "wide"]), default="table"
)
@click.pass_obj
def get(client, kind, namespace, output):
    """List objects of a kind"""
    params = {"namespace": namespace} if namespace is not None else {}
    result = client._make_request("GET", f"/objects/{kind}", params=params)
    if result is None:
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(result, indent=2))
        return

    headers = ["Namespace", "Name", "Phase", "Ready", "Remote ID"]
    if output == "wide":
        headers += ["Generation", "Last Reconcile", "Message"]

    rows = []
    for obj in result:
        body = obj["body"]
        row = [
            obj["namespace"] or "-",
            obj["name"],
            obj["phase"],
            ready_reason(body),
            body.get("status", {}).get("atProvider", {}).get("id", ""),
        ]
        if output == "wide":
            row += [
                f"{obj['observed_generation']}/{obj['generation']}",
                obj.get("last_reconcile_time") or "Never",
                obj.get("status_message") or "",
            ]
        rows.append(row)

    click.echo(tabulate(rows, headers=headers, tablefmt="simple"))


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
@click.pass_obj
def describe(client, kind, name, namespace, output):
    """Describe a specific object"""
    result = client._make_request(
        "GET", f"/objects/{kind}/{name}", params={"namespace": namespace}
    )
    if result is None:
        sys.exit(1)

    if output == "yaml":
        click.echo(yaml.dump(result, default_flow_style=False))
    else:
        click.echo(json.dumps(result, indent=2))


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="")
@click.confirmation_option(prompt="Are you sure you want to delete this object?")
@click.pass_obj
def delete(client, kind, name, namespace):
    """Delete an object (managed objects are torn down remotely first)"""
    result = client._make_request(
        "DELETE", f"/objects/{kind}/{name}", params={"namespace": namespace}
    )
    if result is None:
        sys.exit(1)
    click.echo(result["message"])


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="")
@click.pass_obj
def reconcile(client, kind, name, namespace):
    """Manually trigger reconciliation for an object"""
    result = client._make_request(
        "POST", f"/objects/{kind}/{name}/reconcile", params={"namespace": namespace}
    )
    if result is None:
        sys.exit(1)
    click.echo("Reconciliation triggered successfully")


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("--namespace", "-n", default="")
@click.option("--limit", "-l", default=10, help="Number of history entries to show")
@click.pass_obj
def history(client, kind, name, namespace, limit):
    """Show reconciliation history for an object"""
    result = client._make_request(
        "GET",
        f"/objects/{kind}/{name}/history",
        params={"namespace": namespace, "limit": limit},
    )
    if result is None:
        sys.exit(1)

    headers = ["ID", "Generation", "Operation", "Success", "Trigger", "Error", "Time"]
    rows = []
    for entry in result:
        rows.append(
            [
                entry["id"],
                entry["generation"],
                entry["operation"],
                "✓" if entry["success"] else "✗",
                entry.get("trigger_reason") or "",
                entry.get("error_message") or "",
                entry["reconcile_time"],
            ]
        )

    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


if __name__ == "__main__":
    cli()
