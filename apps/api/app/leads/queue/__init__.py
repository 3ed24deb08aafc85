from app.leads.queue.service import LeadQueue, lead_queue

__all__ = ["LeadQueue", "lead_queue"]
