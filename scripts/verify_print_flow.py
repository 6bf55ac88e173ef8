#!/usr/bin/env python3
"""
Manual check against a running server (uvicorn autoprint.main:app).

Creates a job for a PDF already in UPLOAD_DIR, waits for the quote,
confirms payment and follows the job until it reaches a terminal status.
"""
import asyncio
import sys

import httpx

API_URL = "http://localhost:8000"
TERMINAL = {"completed", "failed", "cancelled"}

async def wait_for_status(client: httpx.AsyncClient, job_id: str, done, timeout: float = 120.0) -> dict:
    deadline = asyncio.get_running_loop().time() + timeout
    last = None
    while asyncio.get_running_loop().time() < deadline:
        job = (await client.get(f"/api/v1/jobs/{job_id}")).json()
        if (job["status"], job["progress"]) != last:
            last = (job["status"], job["progress"])
            print(f"  {job['status']:<10} {job['progress']:>3}%  {job.get('failure_reason') or ''}")
        if done(job):
            return job
        await asyncio.sleep(0.5)
    raise TimeoutError(f"Job {job_id} stuck in {last}")

async def verify(document: str):
    print("Waiting for API to be ready...")
    async with httpx.AsyncClient(base_url=API_URL, timeout=5.0) as check_client:
        for _ in range(30):
            try:
                resp = await check_client.get("/health")
                if resp.status_code == 200:
                    print("API is ready!")
                    break
            except httpx.HTTPError:
                pass
            await asyncio.sleep(1)
        else:
            print("API failed to become ready.")
            return

    async with httpx.AsyncClient(base_url=API_URL, timeout=30.0) as client:
        print(f"Submitting {document}...")
        resp = await client.post("/api/v1/jobs", json={
            "payer_identity": "+10000000000",
            "document_ref": document,
        })
        if resp.status_code != 201:
            print(f"Failed to create job: {resp.text}")
            return
        job_id = resp.json()["id"]
        print(f"Job {job_id} created")

        job = await wait_for_status(
            client, job_id,
            lambda j: (j["status"] == "pending" and j["progress"] == 100) or j["status"] in TERMINAL
        )
        if job["status"] in TERMINAL:
            print(f"FAILURE: Job ended as {job['status']} before payment")
            return
        print(f"Quoted: {job['page_count']} page(s), cost {job['cost']}")

        resp = await client.post(f"/api/v1/jobs/{job_id}/payments/confirm", json={"gateway_reference": f"manual-{job_id[:8]}"})
        print(f"Payment confirmed: {resp.status_code}")

        job = await wait_for_status(client, job_id, lambda j: j["status"] in TERMINAL)
        if job["status"] == "completed":
            print("SUCCESS: Job printed")
        else:
            print(f"FAILURE: Job ended as {job['status']} ({job.get('failure_reason')})")

        stats = (await client.get("/api/v1/queue")).json()
        print(f"Queue: waiting={stats['waiting']} active={stats['active']} failed={stats['failed']}")

if __name__ == "__main__":
    asyncio.run(verify(sys.argv[1] if len(sys.argv) > 1 else "/uploads/sample.pdf"))
