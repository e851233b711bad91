"""Module defining various global constants."""

# treesync version
VERSION = "1.0.0"

# On-disk format of the synchronization files
# The major version must be identical between the writer and any reader.
#
# Adding fields to the meta record or new entry kinds that older readers can skip
# does not require a major version bump.
FORMAT_VERSION = "1.0.0"

# Special exit code for when treesync itself fails.
TREESYNC_ERROR_CODE = 254

# Append-only log of Add/Remove entries, one per line.
SYNC_LOG_FILENAME = "sync.jsonl"

# Revision, size and digest of the log file.
SYNC_META_FILENAME = "sync-meta.json"

# Inter-process lock guarding reads and writes of the two files above.
SYNC_LOCK_FILENAME = "sync.lock"

# Names at the root of a tree that are never part of the synchronized content.
RESERVED_FILENAMES = (SYNC_LOG_FILENAME, SYNC_META_FILENAME, SYNC_LOCK_FILENAME)

# Prefix of temporary files created next to the synchronization files.
TEMP_PREFIX = ".treesync-"

# Block size used when digesting and transferring file contents.
CHUNK_SIZE = 64 * 1024
