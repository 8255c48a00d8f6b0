"""This module watches remote storage for changes.

Neither WebDAV nor Dropbox push change events to a client, and the two
services offer different ways to find out that something changed.  Each
way is wrapped in an observation task with the same ``start``/``stop``/
``fire_changed`` interface.  Two implementations are provided.  One polls a
WebDAV folder and compares its ETag between requests.  The other long-polls
the Dropbox list_folder endpoints with a cursor.

Providers create the task that fits them, and the ``ObservationRegistry``
runs every task on its own thread, keeping at most one per path.
"""
