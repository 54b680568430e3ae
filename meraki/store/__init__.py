"""Local replica of a user's records.

Record table, change log, sync cursor and device identity. Everything here runs on
the device and works fully offline; the sync package is the only caller of the
remote-facing operations (`apply_batch`, `settle_push`, `acknowledge_local`).
"""
