"""Job submission backends.

- hdfs: the ``hadoop`` command line (filesystem shell and ``hadoop jar``)
- dataproc: the Dataproc jobs REST API, with Google Cloud Storage for job files
"""

from streamjob.backends.dataproc import DataprocSubmitter
from streamjob.backends.hdfs import HadoopCli, HdfsFile, find_streaming_jar
from streamjob.backends.job import DEFAULT_PROTO, JobDescriptor, Submitter, absolute_path
from streamjob.backends.storage import StorageClient, StorageObject

__all__ = [
    "DEFAULT_PROTO",
    "DataprocSubmitter",
    "HadoopCli",
    "HdfsFile",
    "JobDescriptor",
    "StorageClient",
    "StorageObject",
    "Submitter",
    "absolute_path",
    "find_streaming_jar",
]
