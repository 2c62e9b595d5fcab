"""Generate sample master-data or inbound CSV files for testing bulk uploads."""
import csv
import random
import sys
from datetime import date, timedelta


def generate_csv(num_rows: int, output_file: str, kind: str = "master-data", duplicate_rate: float = 0.0) -> None:
    """
    Generate a CSV file with random unit rows.

    Args:
        num_rows: Number of rows to generate
        output_file: Output CSV file path
        kind: "master-data" or "inbound" column layout
        duplicate_rate: Fraction of rows that repeat an earlier WSN
    """
    brands = ["Acme", "Globex", "Initech", "Umbrella", "Stark", "Wayne", "Hooli", "Soylent"]
    verticals = ["Mobile", "Laptop", "Television", "Audio", "Kitchen", "Furniture", "Apparel", "Toys"]
    grades = ["A", "B", "C", "D"]

    if kind == "inbound":
        header = ["WSN", "INBOUND_DATE", "VEHICLE_NO", "PRODUCT_SERIAL_NUMBER", "RACK_NO", "UNLOAD_REMARKS"]
    else:
        header = ["WSN", "WID", "FSN", "Product_Title", "BRAND", "CMS_Vertical", "MRP", "FSP", "FK_Grade", "HSN/SAC"]

    start = date.today() - timedelta(days=30)
    with open(output_file, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)

        for i in range(num_rows):
            if i and random.random() < duplicate_rate:
                wsn = f"WSN{random.randint(1, i):09d}"
            else:
                wsn = f"WSN{i + 1:09d}"

            if kind == "inbound":
                writer.writerow([
                    wsn,
                    (start + timedelta(days=random.randint(0, 30))).isoformat(),
                    f"KA{random.randint(1, 99):02d}AB{random.randint(1000, 9999)}",
                    f"SN{random.randint(10**7, 10**8 - 1)}",
                    f"R-{random.randint(1, 40):02d}",
                    random.choice(["", "Box damaged", "Seal intact", ""]),
                ])
            else:
                brand = random.choice(brands)
                vertical = random.choice(verticals)
                mrp = random.randint(500, 80000)
                writer.writerow([
                    wsn,
                    f"WID{i + 1:08d}",
                    f"FSN{random.randint(10**9, 10**10 - 1)}",
                    f"{brand} {vertical} Model {random.randint(1, 999)}",
                    brand,
                    vertical,
                    mrp,
                    int(mrp * random.uniform(0.6, 0.95)),
                    random.choice(grades),
                    random.choice(["8517", "8471", "8528", "8518"]),
                ])

            # Print progress every 10,000 rows
            if (i + 1) % 10000 == 0:
                print(f"Generated {i+1:,} rows...")

    print(f"✅ Successfully generated {num_rows:,} {kind} rows in {output_file}")


def main():
    """Main function to parse arguments and generate CSV."""
    if len(sys.argv) < 2:
        print("Usage: python generate_csv.py <num_rows> [output_file] [master-data|inbound] [duplicate_rate]")
        print("Example: python generate_csv.py 500000 sample_500k.csv inbound 0.01")
        sys.exit(1)

    num_rows = int(sys.argv[1])
    output_file = sys.argv[2] if len(sys.argv) > 2 else f"sample_{num_rows}.csv"
    kind = sys.argv[3] if len(sys.argv) > 3 else "master-data"
    duplicate_rate = float(sys.argv[4]) if len(sys.argv) > 4 else 0.0

    print(f"Generating {kind} CSV with {num_rows:,} rows...")
    generate_csv(num_rows, output_file, kind, duplicate_rate)


if __name__ == "__main__":
    main()
