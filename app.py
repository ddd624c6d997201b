#!/usr/bin/env python3
"""CDK entry point for the notes three-tier deployment.

Deployment inputs are read from CDK context, either in cdk.json or on the
command line:

    cdk deploy -c operator_cidr=203.0.113.10/32 -c domain_name=notes.example.com \\
        -c acme_email=ops@example.com -c container_image=<account>.dkr.ecr.<region>.amazonaws.com/notes:latest
"""
import os

import aws_cdk as cdk

from notes_infrastructure.notes_infrastructure_stack import (
    NotesDeploymentProps,
    NotesInfrastructureStack,
)

app = cdk.App()

props = NotesDeploymentProps(
    operator_cidr=app.node.try_get_context("operator_cidr"),
    domain_name=app.node.try_get_context("domain_name"),
    acme_email=app.node.try_get_context("acme_email"),
    container_image=app.node.try_get_context("container_image"),
    hosted_zone_id=app.node.try_get_context("hosted_zone_id"),
    hosted_zone_name=app.node.try_get_context("hosted_zone_name"),
    desired_count=int(app.node.try_get_context("desired_count") or 2),
    max_count=int(app.node.try_get_context("max_count") or 4),
)

NotesInfrastructureStack(
    app,
    "NotesInfrastructureStack",
    props=props,
    env=cdk.Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION"),
    ),
)

cdk.Tags.of(app).add("Project", "notes")

app.synth()
