"""
Mutating Admission Webhook: enable nested virtualization on selected VMs.

Behavior:
- Target resources: KubeVirt VirtualMachine objects whose name matches one of
  the regular expressions configured for their namespace.
- Mutation: the host's virtualization CPU feature ("vmx" on Intel, "svm" on
  AMD) is added to spec.template.spec.domain.cpu.features with policy
  "require", unless a feature of that name is already listed.

Implementation details:
- Receives AdmissionReview requests at /mutate (HTTPS, POST only).
- Returns a single base64-encoded JSON Patch operation. If no mutation is
  needed, returns allowed=true with no patch.
- Errors after the request is decoded fail open with a status message. A body
  that is not an AdmissionReview is answered with HTTP 400.

Configuration: YAML file (--config / WEBHOOK_CONFIG), WEBHOOK_* environment
variables and command-line options, in increasing order of precedence. See
settings.py.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import typer
from flask import Flask, jsonify, request

from .detector import detector_from_settings
from .handler import WebhookHandler
from .mutation import VMFeatureMutator
from .schema import DEFAULT_ADMISSION_API_VERSION, TransportDecodeError, encode_admission_review
from .settings import Settings, SettingsError, build_rules, env_overrides, load_settings, merge_with_overrides


def create_app(handler: WebhookHandler) -> Flask:
    """Build the Flask app serving /mutate and /healthz for `handler`."""
    app = Flask(__name__)

    @app.route("/mutate", methods=["POST"])
    def mutate():
        """Admission endpoint returning a JSON Patch for matching VMs.

        Request: AdmissionReview with `request.object` holding the VM.
        Response: AdmissionReview with `response.allowed=true`, echoing the
                  request uid, plus `patch`/`patchType` when a change is made
                  or `status.message` when processing failed.
        """
        try:
            review = handler.review(request.get_data())
        except TransportDecodeError as exc:
            app.logger.warning("rejecting request: %s", exc)
            return str(exc), 400, {"Content-Type": "text/plain; charset=utf-8"}
        except Exception as exc:  # noqa: BLE001
            app.logger.exception("mutation failed: %s", exc)
            # Fail open; the uid is echoed when the body still yields one.
            body = request.get_json(force=True, silent=True)
            req = body.get("request") if isinstance(body, dict) else None
            uid = req.get("uid") if isinstance(req, dict) else None
            response = {"uid": uid, "allowed": True, "status": {"message": f"internal error: {exc}"}}
            return jsonify(encode_admission_review(DEFAULT_ADMISSION_API_VERSION, response))
        return jsonify(review)

    @app.route("/healthz", methods=["GET"])  # liveness/readiness
    def healthz():
        """Simple liveness/readiness probe endpoint."""
        return "ok", 200

    return app


def resolve_settings(config_file: Optional[Path], cli_overrides: dict) -> Settings:
    """Layer config file, environment and CLI options."""
    settings = load_settings(str(config_file) if config_file else None)
    settings = merge_with_overrides(env_overrides(), settings)
    return merge_with_overrides(cli_overrides, settings)


cli = typer.Typer(help="Kubernetes mutating webhook enabling nested virtualization on VirtualMachines.")


@cli.command()
def serve(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", envvar="WEBHOOK_CONFIG", help="YAML configuration file."
    ),
    port: Optional[int] = typer.Option(None, "--port", help="Webhook server port (default 8443)."),
    cert_file: Optional[str] = typer.Option(None, "--cert-file", help="TLS certificate file."),
    key_file: Optional[str] = typer.Option(None, "--key-file", help="TLS key file."),
    configmap_name: Optional[str] = typer.Option(
        None, "--configmap-name", help="ConfigMap holding namespace: patterns rules."
    ),
    configmap_namespace: Optional[str] = typer.Option(None, "--configmap-namespace", help="ConfigMap namespace."),
    kubeconfig: Optional[str] = typer.Option(
        None, "--kubeconfig", help="Path to kubeconfig (in-cluster config is used otherwise)."
    ),
    cpu_feature: Optional[str] = typer.Option(
        None, "--cpu-feature", help="Pin the injected feature (vmx or svm) instead of reading the host."
    ),
    cpuinfo_path: Optional[str] = typer.Option(None, "--cpuinfo-path", help="CPU info file to inspect."),
    debug: Optional[bool] = typer.Option(None, "--debug/--no-debug", help="Enable debug logging."),
) -> None:
    """Run the webhook with TLS."""
    overrides = {
        "port": port,
        "cert_file": cert_file,
        "key_file": key_file,
        "configmap_name": configmap_name,
        "configmap_namespace": configmap_namespace,
        "kubeconfig": kubeconfig,
        "cpu_feature": cpu_feature,
        "cpuinfo_path": cpuinfo_path,
        "debug": debug,
    }
    try:
        settings = resolve_settings(config_file, overrides)
    except SettingsError as exc:
        typer.echo(f"Failed to load configuration: {exc}", err=True)
        raise typer.Exit(code=1)

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)

    try:
        rules = build_rules(settings)
        detector = detector_from_settings(settings.cpu_feature, settings.cpuinfo_path)
    except (SettingsError, ValueError) as exc:
        typer.echo(f"Failed to load rules: {exc}", err=True)
        raise typer.Exit(code=1)

    for path in (settings.cert_file, settings.key_file):
        if not os.path.isfile(path):
            typer.echo(f"TLS file not found at {path}", err=True)
            raise typer.Exit(code=1)

    app = create_app(WebhookHandler(rules, VMFeatureMutator(detector)))
    app.logger.info(
        "Starting webhook on port %s (%d rules, detector %r)",
        settings.port,
        len(rules),
        detector,
    )
    app.run(
        host="0.0.0.0",
        port=settings.port,
        ssl_context=(settings.cert_file, settings.key_file),
        threaded=True,
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
