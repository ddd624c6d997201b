import pytest

from notes_infrastructure.edge_proxy import (
    EdgeProxyConfigError,
    render_nginx_config,
    render_user_data,
)

DOMAIN = "notes.example.com"
UPSTREAM = "internal-notes-alb-123.eu-central-1.elb.amazonaws.com"


def test_tls_config_redirects_plain_http():
    config = render_nginx_config(DOMAIN, UPSTREAM)

    assert "return 301 https://$host$request_uri;" in config
    assert "listen 443 ssl;" in config
    assert "http2 on;" in config
    assert "ssl http2" not in config
    assert f"ssl_certificate /etc/letsencrypt/live/{DOMAIN}/fullchain.pem;" in config
    assert f"ssl_certificate_key /etc/letsencrypt/live/{DOMAIN}/privkey.pem;" in config
    # ACME challenges keep working on port 80 for renewals.
    assert "location ^~ /.well-known/acme-challenge/" in config


def test_config_forwards_client_address_and_protocol():
    config = render_nginx_config(DOMAIN, UPSTREAM)

    assert f"set $notes_upstream http://{UPSTREAM}:80;" in config
    assert "proxy_pass $notes_upstream;" in config
    assert "proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;" in config
    assert "proxy_set_header X-Forwarded-Proto $scheme;" in config
    assert "proxy_set_header X-Real-IP $remote_addr;" in config
    assert "proxy_set_header Host $host;" in config


def test_config_returns_gateway_errors_when_upstream_is_down():
    config = render_nginx_config(DOMAIN, UPSTREAM)

    assert "error_page 502 = @bad_gateway;" in config
    assert "return 502 " in config
    assert "error_page 504 = @gateway_timeout;" in config
    assert "return 504 " in config


def test_bootstrap_config_has_no_tls():
    config = render_nginx_config(DOMAIN, UPSTREAM, tls=False)

    assert "443" not in config
    assert "return 301" not in config
    assert "ssl_certificate" not in config
    assert "location ^~ /.well-known/acme-challenge/" in config
    assert "proxy_pass $notes_upstream;" in config


def test_custom_upstream_port():
    config = render_nginx_config(DOMAIN, "10.0.2.10", upstream_port=5000)
    assert "set $notes_upstream http://10.0.2.10:5000;" in config


@pytest.mark.parametrize("domain", ["", "localhost", "bad domain.com", "notes.example.com;rm -rf /"])
def test_rejects_invalid_domain(domain):
    with pytest.raises(EdgeProxyConfigError):
        render_nginx_config(domain, UPSTREAM)


@pytest.mark.parametrize("upstream,port", [("", 80), ("evil; host", 80), (UPSTREAM, 0), (UPSTREAM, 70000)])
def test_rejects_invalid_upstream(upstream, port):
    with pytest.raises(EdgeProxyConfigError):
        render_nginx_config(DOMAIN, upstream, upstream_port=port)


def test_user_data_issues_and_renews_certificate():
    script = render_user_data(DOMAIN, "ops@example.com", UPSTREAM)

    assert script.startswith("#!/bin/bash\n")
    assert f"-d {DOMAIN}" in script
    assert "--email ops@example.com" in script
    assert "certbot certonly --webroot -w /var/www/letsencrypt" in script
    assert 'certbot renew --quiet --deploy-hook "systemctl reload nginx"' in script
    assert "systemctl enable --now certbot-renew.timer" in script


def test_user_data_installs_bootstrap_and_stages_tls_config():
    script = render_user_data(DOMAIN, "ops@example.com", UPSTREAM)

    bootstrap = script.index("cat > /etc/nginx/conf.d/notes.conf")
    staged = script.index("cat > /etc/nginx/notes-tls.conf")
    tls_listener = script.index("listen 443 ssl;")
    assert bootstrap < staged < tls_listener
    # Only the staged copy carries TLS; conf.d gets it after issuance.
    assert script.count("listen 443 ssl;") == 1
    assert (
        "ExecStartPost=/usr/bin/install -m 644 /etc/nginx/notes-tls.conf "
        "/etc/nginx/conf.d/notes.conf"
    ) in script


def test_user_data_retries_certificate_issuance():
    script = render_user_data(DOMAIN, "ops@example.com", UPSTREAM)
    lines = script.splitlines()

    # A failed validation on first boot must not abort the script under set -e.
    assert not [line for line in lines if line.startswith("certbot certonly")]
    issue = [line for line in lines if "certbot certonly" in line]
    assert issue == [
        "ExecStart=/usr/bin/certbot certonly --webroot -w /var/www/letsencrypt "
        f"-d {DOMAIN} --email ops@example.com --agree-tos --non-interactive "
        "--keep-until-expiring"
    ]
    assert "Restart=on-failure" in lines
    assert "RestartSec=60" in lines
    assert "StartLimitIntervalSec=0" in lines
    assert lines[-1] == "systemctl start --no-block certbot-issue.service"


def test_renewal_timer_is_installed_without_waiting_for_issuance():
    script = render_user_data(DOMAIN, "ops@example.com", UPSTREAM)

    assert script.index("systemctl enable --now certbot-renew.timer") < script.index(
        "systemctl start --no-block certbot-issue.service"
    )


def test_upstream_is_re_resolved():
    config = render_nginx_config(DOMAIN, UPSTREAM)

    assert "resolver 169.254.169.253 valid=30s ipv6=off;" in config
    # A static upstream block would pin the addresses resolved at startup.
    assert not [line for line in config.splitlines() if line.startswith("upstream ")]


@pytest.mark.parametrize("email", ["", "ops", "ops@localhost", "ops@example.com; reboot"])
def test_user_data_rejects_invalid_email(email):
    with pytest.raises(EdgeProxyConfigError):
        render_user_data(DOMAIN, email, UPSTREAM)
