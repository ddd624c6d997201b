"""Edge proxy configuration.

Renders the nginx site configuration and the EC2 user-data script for the
internet-facing proxy host. The host terminates TLS with a Let's Encrypt
certificate (HTTP-01 webroot validation) and forwards to the internal load
balancer.
"""

import os
import re

from aws_cdk import Token
from jinja2 import Environment, FileSystemLoader, StrictUndefined

ACME_WEBROOT = "/var/www/letsencrypt"
# Outside conf.d so nginx ignores it until the certificate exists.
TLS_CONFIG_PATH = "/etc/nginx/notes-tls.conf"
VPC_RESOLVER = "169.254.169.253"
CONNECT_TIMEOUT_SECONDS = 5
READ_TIMEOUT_SECONDS = 60  # Matches the ALB idle timeout.

_HOSTNAME = re.compile(
    r"^(?=.{1,253}$)([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,63}$"
)
_EMAIL = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,63}$")

_env = Environment(
    loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


class EdgeProxyConfigError(ValueError):
    """Raised when the proxy cannot be configured from the given inputs."""


def _check_domain(domain_name: str) -> None:
    if not domain_name or not _HOSTNAME.match(domain_name):
        raise EdgeProxyConfigError(f"Invalid domain name {domain_name!r}")


def _check_upstream(upstream_host: str, upstream_port: int) -> None:
    # Unresolved CDK tokens (e.g. the ALB DNS name) are only known at deploy time.
    if not upstream_host:
        raise EdgeProxyConfigError("upstream_host is required")
    if not Token.is_unresolved(upstream_host) and re.search(r"[\s;{}]", upstream_host):
        raise EdgeProxyConfigError(f"Invalid upstream host {upstream_host!r}")
    if not 0 < upstream_port < 65536:
        raise EdgeProxyConfigError(f"Invalid upstream port {upstream_port!r}")


def render_nginx_config(domain_name: str, upstream_host: str,
                        upstream_port: int = 80, tls: bool = True) -> str:
    """Render the nginx site for ``domain_name``.

    With ``tls=False`` the site only serves the ACME challenge and proxies plain
    HTTP; this is the bootstrap config used until certbot has issued the
    certificate. With ``tls=True`` port 80 redirects to 443.
    """
    _check_domain(domain_name)
    _check_upstream(upstream_host, upstream_port)
    return _env.get_template("nginx.conf.j2").render(
        domain_name=domain_name,
        upstream_host=upstream_host,
        upstream_port=upstream_port,
        tls=tls,
        acme_webroot=ACME_WEBROOT,
        resolver=VPC_RESOLVER,
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
        read_timeout=READ_TIMEOUT_SECONDS,
    )


def render_user_data(domain_name: str, acme_email: str, upstream_host: str,
                     upstream_port: int = 80) -> str:
    """Render the boot script that installs nginx, obtains the certificate and
    schedules renewal.

    Issuance runs as a systemd unit that retries every minute until HTTP-01
    validation succeeds, since DNS may only point at the host after deploy.
    The TLS site replaces the bootstrap site once the certificate exists.
    """
    if not acme_email or not _EMAIL.match(acme_email):
        raise EdgeProxyConfigError(f"Invalid ACME e-mail address {acme_email!r}")
    bootstrap_config = render_nginx_config(domain_name, upstream_host, upstream_port, tls=False)
    tls_config = render_nginx_config(domain_name, upstream_host, upstream_port, tls=True)
    return _env.get_template("edge-proxy-user-data.sh.j2").render(
        domain_name=domain_name,
        acme_email=acme_email,
        acme_webroot=ACME_WEBROOT,
        tls_config_path=TLS_CONFIG_PATH,
        bootstrap_config=bootstrap_config.rstrip("\n"),
        tls_config=tls_config.rstrip("\n"),
    )
