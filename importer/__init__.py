"""
Design
======

The importer loads a content archive (terms, entities with parent and
cross-reference links, and remote attachments) into the siteport content
store.

General goals:

* All state is stored in the database and visible for reporting
* Celery tasks are ephemeral: an import may be stopped after any item and a
  later task for the same job continues after the last item it committed
* An item which was committed is never imported again by the same session

The import process works like this:

1. A user requests the import of an archive file. An ImportJob is created to
   record that request, with a fresh session id, and a Celery task is queued.
2. The task runs an ImportPipeline for the job's session. Terms are imported
   first, then entities in archive order. Each item is checkpointed in the
   session's ImportSession document as soon as it is done.
3. When the task's time budget runs low (or when forced chunking is enabled)
   the pipeline suspends at the next item boundary. The working state needed
   by later items, such as the id remap tables, is saved with the session and
   the task queues a new task for the same job.
4. Entities whose parent hadn't been imported yet are remembered as orphans.
   Once every item has been imported, the backfill steps link orphans to their
   parents, rewrite archive URLs in the imported content to point at the
   stored attachments and remap featured images. Each step runs once.
5. The job is marked as completed with a per-kind summary of succeeded and
   failed archive ids, or as failed with the error that stopped it. A failed
   job keeps its session, so retrying it resumes rather than restarts.
"""
