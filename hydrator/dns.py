"""
Pre-destroy removal of DNS records that Terraform does not manage.

external-dns writes records straight into the hosted zone. Terraform owns only
the zone and its apex NS/SOA records, and refuses to delete a non-empty zone,
so everything else must go before the destroy workflow runs.
"""

import logging
from typing import Dict, List

from botocore.exceptions import ClientError, WaiterError

from .phases import Context
from .probe import Match, ResourceKind, probe

logger = logging.getLogger(__name__)

AUTHORITY_RECORD_TYPES = frozenset({"NS", "SOA"})


def removable_records(records: List[Dict]) -> List[Dict]:
    """Every record except the zone's authority records."""
    return [record for record in records if record["Type"] not in AUTHORITY_RECORD_TYPES]


def list_records(route53, zone_id: str) -> List[Dict]:
    records = []
    paginator = route53.get_paginator("list_resource_record_sets")
    for page in paginator.paginate(HostedZoneId=zone_id):
        records.extend(page.get("ResourceRecordSets", []))
    return records


def clean_dns_records(ctx: Context) -> int:
    """
    Batch-delete non-authority records from the platform's hosted zone.

    Returns:
        Number of records submitted for deletion
    """
    domain = ctx.config.domain_name
    if not domain:
        logger.info("DOMAIN_NAME not set, skipping Route53 cleanup")
        return 0

    route53 = ctx.clients.route53
    zones = probe(ctx.clients, ResourceKind.HOSTED_ZONE, Match.named(domain))
    if not zones:
        logger.info(f"No hosted zone found for {domain}, skipping Route53 cleanup")
        return 0

    zone_id = zones[0]
    logger.info(f"Cleaning up Route53 records created by external-dns in {zone_id}...")
    targets = removable_records(list_records(route53, zone_id))
    if not targets:
        logger.info("No external-dns records to clean up")
        return 0

    logger.info(f"Deleting {len(targets)} DNS records...")
    for record in targets:
        logger.info(f"  Deleting: {record['Name']} ({record['Type']})")

    try:
        response = route53.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch={
                "Comment": "Pre-destroy cleanup of externally managed records",
                "Changes": [{"Action": "DELETE", "ResourceRecordSet": record} for record in targets],
            },
        )
    except ClientError as e:
        message = f"Failed to delete DNS records in {domain}: {e}"
        logger.warning(message)
        ctx.report.warnings.append(message)
        return 0

    change_id = response["ChangeInfo"]["Id"].replace("/change/", "")
    logger.info(f"Waiting for Route53 changes to propagate (Change ID: {change_id})...")
    try:
        route53.get_waiter("resource_record_sets_changed").wait(Id=change_id)
    except WaiterError:
        logger.warning("Wait timed out, continuing anyway")

    logger.info("Route53 cleanup complete")
    ctx.report.deleted.append(f"{len(targets)} external-dns records in {domain}")
    return len(targets)
