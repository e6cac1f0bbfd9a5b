from typing import Optional

from fastapi import Depends

from utils.job_store import JobRecordStore


class Services:
    def __init__(self):
        self.job_store: Optional[JobRecordStore] = None

    async def close(self):
        """Close all services"""
        if self.job_store:
            await self.job_store.close()


services = Services()


JobStoreDep = Depends(lambda: services.job_store)
