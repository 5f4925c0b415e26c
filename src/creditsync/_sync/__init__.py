"""Internal building blocks of :class:`~creditsync.client.CreditSyncClient`."""
