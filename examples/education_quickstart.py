import numpy as np
from time import perf_counter
from cartpy import (
    Dataset, TreeConfig, area_under_curve, best_threshold_by, cp_table, cross_validate,
    enable_logging, sweep_thresholds, train_test_split, tune_loss_penalty,
)

# Synthetic "did the student drop out?" data: grades, attendance, school type
rng = np.random.default_rng(42)
n = 1500
gpa = np.round(rng.normal(3.0, 0.6, n).clip(0, 4), 2)
attendance = rng.uniform(0.5, 1.0, n)
school = rng.choice(["public", "private", "charter"], size=n, p=[0.6, 0.25, 0.15])
risk = 2.5 - 1.2 * gpa - 3.0 * (attendance - 0.75) + 0.4 * (school == "charter")
y = (rng.uniform(size=n) < 1 / (1 + np.exp(-risk))).astype(int)

X = np.empty((n, 3), dtype=object)
X[:, 0] = gpa
X[:, 1] = attendance
X[:, 2] = school
X[rng.choice(n, 60, replace=False), 1] = None   # some attendance records are missing

feats = ["gpa", "attendance", "school"]
data = Dataset(X, y, feature_names=feats)
train, test = train_test_split(data, test_fraction=0.25, seed=1)
print(train, test)

with enable_logging(level="INFO"):
    t0 = perf_counter()
    res = cross_validate(train, k=10, repeats=3, seed=7, metric="sens_spec_sum",
                         selection_rule="one_standard_error", config=TreeConfig(min_split=20),
                         n_jobs=-1)
    print(f"cross_validate: {perf_counter()-t0:.3f} s")

for row in res.table:
    print(f"cp={row.complexity_parameter:.5f}  mean={row.mean:.4f}  se={row.std_error:.4f}  leaves={row.n_leaves}")
print("\ncp table of the refit tree")
for row in cp_table(res.tree):
    print(f"  cp={row.complexity_parameter:.5f}  splits={row.n_splits}  rel_error={row.rel_error:.3f}")

print(res.tree.to_text(class_names=["stays", "drops out"]))

curve = sweep_thresholds(res.tree.predict_proba(test)[:, 1], test.labels)
best = best_threshold_by(curve, "youden")
print(f"\nAUC={area_under_curve(curve):.3f}  best threshold={best.threshold:.3f} "
      f"(sens={best.sensitivity:.3f}, spec={best.specificity:.3f})")

# Heavier false-negative penalties trade specificity for sensitivity
for p, r in tune_loss_penalty(train, [1, 2, 4, 8], k=5, seed=7, metric="sens_spec_sum"):
    best = best_threshold_by(sweep_thresholds(r.tree.predict_proba(test)[:, 1], test.labels))
    print(f"penalty={p:g}  cp={r.selected_cp:.5f}  leaves={r.tree.n_leaves}  youden={best.youden:.3f}")
