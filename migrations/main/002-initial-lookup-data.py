"""Initial lookup data: user roles, user statuses and chat types"""

LOOKUPS = {
    'userRole': [
        'Platform Super Admin',
        'Platform Admin',
        'Platform User',
        'Platform Agent',
        'Platform Manager',
        'Platform Auditor',
        'Tenant Admin',
        'Tenant Manager',
        'Tenant Agent',
        'Tenant User',
        'Tenant Employee',
    ],
    'userStatus': ['Pending', 'Active', 'Archived', 'Suspended'],
    'chatType': ['1:1 Chat', 'Group Chat'],
}


def up(handle):
    for lookup_type, labels in LOOKUPS.items():
        handle.execute(
            "INSERT INTO lookup_type (name) VALUES (:name) ON CONFLICT (name) DO NOTHING",
            {"name": lookup_type},
        )
        type_id = handle.execute(
            "SELECT id FROM lookup_type WHERE name = :name", {"name": lookup_type}
        )[0]["id"]
        for label in labels:
            handle.execute(
                'INSERT INTO lookup (label, "lookupTypeId") VALUES (:label, :type_id) '
                'ON CONFLICT ("lookupTypeId", label) DO NOTHING',
                {"label": label, "type_id": type_id},
            )


def down(handle):
    for lookup_type in LOOKUPS:
        handle.execute(
            'DELETE FROM lookup WHERE "lookupTypeId" IN '
            '(SELECT id FROM lookup_type WHERE name = :name)',
            {"name": lookup_type},
        )
        handle.execute("DELETE FROM lookup_type WHERE name = :name", {"name": lookup_type})
