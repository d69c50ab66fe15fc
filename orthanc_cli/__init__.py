"""
orthanc_cli: command-line client for the Orthanc DICOM server.

Wraps the Orthanc REST API and its DICOMweb plugin (QIDO-RS, WADO-RS,
WADO-URI) behind ``orthanc <resource> <action>`` commands.

Configuration Approach
----------------------
Server settings live in named *contexts* inside a single YAML file
(``~/.orthanc-cli.yaml`` by default), so one installation can switch between
several Orthanc servers:

1. Exactly one context is current; every command talks to it.
2. ``ORTHANC_URL``, ``ORTHANC_USERNAME``, ``ORTHANC_PASSWORD`` and
   ``ORTHANC_INSECURE`` override the current context for one invocation.
3. Files written by older releases (a single flat ``orthanc:`` block) are
   migrated into a ``default`` context the first time they are loaded.

WADO-RS bulk retrievals arrive as ``multipart/related`` bodies; see
:mod:`orthanc_cli.multipart` for how they are split into DICOM files.
"""

__version__ = "0.1.0"
