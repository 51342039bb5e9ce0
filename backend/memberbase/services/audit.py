from memberbase.db.repositories import SystemRepo


def audit_membership_change(repo: SystemRepo, before: dict | None, after: dict | None, data: dict | None = None):
    if not before or not after:
        return
    if before["tier_id"] == after["tier_id"] and before["status"] == after["status"]:
        return
    repo.insert_membership_audit(
        {
            "membership_id": after["id"],
            "user_id": after["user_id"],
            "action": "tier_changed" if before["tier_id"] != after["tier_id"] else "status_changed",
            "old_tier_id": before["tier_id"],
            "new_tier_id": after["tier_id"],
            "old_status": before["status"],
            "new_status": after["status"],
            "data": {
                "old_billing_cycle": before.get("billing_cycle"),
                "new_billing_cycle": after.get("billing_cycle"),
                **(data or {}),
            },
        }
    )
