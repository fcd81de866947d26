"""Points engine: accrual law, task payload, planning, scheduler and worker."""
